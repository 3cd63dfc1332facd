import importlib.util
import json
from pathlib import Path

from sqlmodel import Session

from concurso_prep.database import engine
from concurso_prep.services import ApostilaService

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "import_apostilas.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("import_apostilas", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_catalog_import_links_apostilas_to_concursos(tmp_path, capsys):
    catalog = {
        "concursos": [{"nome": "Receita Federal 2026", "categoria": "Fiscal", "ano": 2026, "banca": "FGV"}],
        "apostilas": [
            {"title": "Contabilidade Geral", "url": "https://example.org/cg.pdf", "concurso": "Receita Federal 2026"},
            {"title": "", "url": "https://example.org/blank.pdf"},
        ],
    }
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(catalog), encoding="utf-8")

    _load_script().main(path)
    out = capsys.readouterr().out
    assert "Skipping apostila" in out
    assert "Created concursos: 1, apostilas: 1" in out

    with Session(engine) as session:
        items = ApostilaService(session).list()
    imported = [a for a in items if a["title"] == "Contabilidade Geral"]
    assert imported[0]["concursos"]["banca"] == "FGV"


def test_dry_run_writes_nothing(tmp_path, capsys):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"concursos": [], "apostilas": [{"title": "x", "url": "y"}]}), encoding="utf-8")
    _load_script().main(path, dry_run=True)
    assert "Would import 0 concursos and 1 apostilas" in capsys.readouterr().out
