"""CLI script to load contests and study material from a JSON file.
Usage: python scripts/import_apostilas.py catalog.json [--dry-run]

The file holds `{"concursos": [...], "apostilas": [...]}`. Apostilas may
point at a contest either by `concurso_id` or by the contest's `nome`
(resolved against the contests created by the same file).
"""
import sys
import json
import argparse
import pathlib
# Ensure `backend/` is on sys.path so package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from concurso_prep.database import engine, create_db_and_tables
from concurso_prep import services


def main(path: pathlib.Path, dry_run: bool = False):
    """Create every contest and apostila listed in `path`.

    Invalid items are reported and skipped; results are printed to stdout
    for a quick CLI feedback loop.
    """
    if not path.exists():
        print(f'Catalog file not found at {path}')
        return
    data = json.loads(path.read_text(encoding='utf-8'))
    concursos = data.get('concursos', []) if isinstance(data, dict) else []
    apostilas = data.get('apostilas', []) if isinstance(data, dict) else []
    if dry_run:
        print(f'Would import {len(concursos)} concursos and {len(apostilas)} apostilas')
        return
    create_db_and_tables()
    with Session(engine) as session:
        svc = services.ApostilaService(session)
        by_name = {}
        for c in concursos:
            try:
                created = svc.create_concurso(c.get('nome'), c.get('categoria'), c.get('ano'), c.get('banca'))
                by_name[created.nome] = created.id
            except ValueError as e:
                print(f'Skipping concurso {c!r}: {e}')
        total_created = 0
        for a in apostilas:
            concurso_id = a.get('concurso_id') or by_name.get(a.get('concurso'))
            try:
                svc.create(a.get('title'), a.get('url'), a.get('description'), concurso_id)
                total_created += 1
            except ValueError as e:
                print(f'Skipping apostila {a!r}: {e}')
        print(f'Created concursos: {len(by_name)}, apostilas: {total_created}')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('catalog', type=pathlib.Path, help='JSON file with concursos and apostilas')
    parser.add_argument('--dry-run', action='store_true', help='Only count the items in the file')
    args = parser.parse_args()
    main(args.catalog, dry_run=args.dry_run)
