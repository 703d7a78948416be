import json

from tools.route_question import load_dataset, main

ROWS = [
    {"Name": "A", "Attack": 10},
    {"Name": "B", "Attack": 50},
    {"Name": "C", "Attack": 30},
]


def test_json_dataset_routes_to_top_n(tmp_path, capsys) -> None:
    path = tmp_path / "pokemon.json"
    path.write_text(json.dumps({"sheets": {"Pokemon": ROWS}}), encoding="utf-8")

    code = main(["--dataset", str(path), "--question", "top 2 by Attack", "--json"])
    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["intent"] == "top_n"
    assert out["chart"]["xKey"] == "Name"
    assert "1. B: 50" in out["processed"]


def test_csv_dataset_with_prompt(tmp_path, capsys) -> None:
    path = tmp_path / "pokemon.csv"
    path.write_text("Name,Attack\nA,10\nB,50\nC,30\n", encoding="utf-8")
    assert load_dataset(str(path)).sheets["pokemon"][1] == {"Name": "B", "Attack": 50}

    code = main(["--dataset", str(path), "--question", "sort by Attack", "--show-prompt"])
    out = capsys.readouterr().out
    assert code == 0
    assert out.startswith("intent: sort")
    assert "User Question: sort by Attack" in out


def test_missing_dataset_exits_with_error(tmp_path, capsys) -> None:
    code = main(["--dataset", str(tmp_path / "nope.json"), "--question", "x"])
    assert code == 2
    assert "Dataset not found" in capsys.readouterr().err
