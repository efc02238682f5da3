import json

from kasir.sample_data import SAMPLE_PRODUCTS


def test_seed_list_and_sync_status(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["catalog", "seed"])
    assert result.exit_code == 0
    assert f"Seeded {len(SAMPLE_PRODUCTS)} sample products" in result.output
    assert "skipping seed" in runner.invoke(args=["catalog", "seed"]).output

    result = runner.invoke(args=["catalog", "list", "--query", "aqua"])
    assert "Aqua 600ml" in result.output

    result = runner.invoke(args=["sync", "status"])
    assert f"Pending items:     {len(SAMPLE_PRODUCTS)}" in result.output

    result = runner.invoke(args=["sync", "flush"])
    assert "nothing sent" in result.output


def test_export_and_wipe(app, db_session, tmp_path):
    runner = app.test_cli_runner()
    runner.invoke(args=["catalog", "seed"])

    target = tmp_path / "backup.json"
    assert runner.invoke(args=["data", "export", "--output", str(target)]).exit_code == 0
    assert len(json.loads(target.read_text())["products"]) == len(SAMPLE_PRODUCTS)

    assert runner.invoke(args=["system", "wipe", "--yes"]).exit_code == 0
    assert "No products found." in runner.invoke(args=["catalog", "list"]).output

    result = runner.invoke(args=["data", "import", str(target), "--yes"])
    assert f"products: {len(SAMPLE_PRODUCTS)}" in result.output


def test_import_with_bad_stock_writes_nothing(app, db_session, tmp_path):
    runner = app.test_cli_runner()
    runner.invoke(args=["catalog", "seed"])

    target = tmp_path / "bad.json"
    target.write_text(json.dumps({
        "products": [{"id": "p-1", "name": "Teh", "barcode": "111", "price": 3000, "cost": 2000, "stock": -4}],
    }))

    result = runner.invoke(args=["data", "import", str(target), "--yes"])

    assert result.exit_code == 0
    assert "FAIL Nothing imported" in result.output
    assert "Aqua 600ml" in runner.invoke(args=["catalog", "list"]).output
