import json

import pytest

import cli_quote as cli
import config_core as cfg
from quote_errors import InvalidParameterError
from tests.helpers_cli import repo_root, run_cli
from tests.helpers_mesh import cube_triangles, write_binary_stl


def _write_configs(tmp_path, materials=None, machines=None, pricing=None):
    (tmp_path / "materials.json").write_text(
        json.dumps(materials if materials is not None else cfg.DEFAULT_MATERIALS), encoding="utf-8")
    (tmp_path / "machines.json").write_text(
        json.dumps(machines if machines is not None else cfg.DEFAULT_MACHINES), encoding="utf-8")
    (tmp_path / "pricing.json").write_text(
        json.dumps(pricing if pricing is not None else {"currency": "USD"}), encoding="utf-8")


def test_cli_and_core_config_loading_match(tmp_path):
    materials = {"PA12 Custom": {"cost_per_cm3": 0.2, "reuse_rate": 0.5}}
    pricing = {"energy_rate_kwh": 0.2, "markup": {"profit_pct": 20}}
    _write_configs(tmp_path, materials=materials, pricing=pricing)

    core_materials = cfg.load_materials_json(str(tmp_path / "materials.json"))
    core_machines = cfg.load_machines_json(str(tmp_path / "machines.json"))
    core_pricing = cfg.load_pricing_json(str(tmp_path / "pricing.json"), base=cfg.DEFAULT_PRICING)

    cli_materials, cli_machines, cli_pricing, paths = cli.load_configs_via_core(str(tmp_path))

    assert cli_materials == core_materials
    assert cli_machines == core_machines
    assert cli_pricing == core_pricing
    assert paths[0] == str(tmp_path / "materials.json")
    # файл мерджится поверх дефолтов
    assert cli_pricing["markup"] == {"overhead_pct": 15, "profit_pct": 20}
    assert cli_pricing["labor"]["qc"]["rate"] == 38.0


def test_repo_config_files_match_defaults():
    root = cfg.get_default_config_dir()
    machines = cfg.load_machines_json(cfg.get_default_machines_path(root))
    pricing = cfg.load_pricing_json(cfg.get_default_pricing_path(root), base=cfg.DEFAULT_PRICING)
    materials = cfg.load_materials_json(cfg.get_default_materials_path(root))
    assert machines == cfg.default_machines()
    assert pricing == cfg.default_pricing()
    assert materials["PA12"] == cfg.default_materials()["PA12"]


def test_parse_materials_and_machines():
    mats = cfg.default_materials()
    assert mats["PA12"].cost_per_cm3 == 0.17
    assert mats["PA12"].reuse_rate == 0.8
    assert mats["PA12"].density == 1.01
    m = cfg.default_machines()["HP Jet Fusion 5200"]
    assert m.chamber_mm == (380.0, 284.0, 380.0)
    assert m.time_distribution.active == pytest.approx(0.9)


def test_operating_costs_and_tiers_from_pricing():
    pricing = cfg.default_pricing()
    cli.set_by_dotted_path(pricing, "labor.qc.rate", 40)
    op = cfg.operating_costs_from_pricing(pricing)
    assert op.qc_rate == 40.0
    assert op.markup_factor == pytest.approx(1.3)
    tiers = cfg.post_processing_tiers(pricing)
    assert list(tiers) == ["basic", "medium", "advanced"]
    assert tiers["medium"].cost_per_cm3 == 0.05


def test_missing_tier_is_rejected():
    pricing = cfg.default_pricing()
    del pricing["post_processing"]["advanced"]
    with pytest.raises(ValueError, match="post_processing.advanced"):
        cfg.post_processing_tiers(pricing)


def test_deep_merge_is_recursive():
    dst = {"a": {"b": 1, "c": 2}, "d": 3}
    out = cfg.deep_merge(dst, {"a": {"c": 5, "e": 6}, "d": {"x": 1}})
    assert out is dst
    assert dst == {"a": {"b": 1, "c": 5, "e": 6}, "d": {"x": 1}}


def test_default_pricing_returns_fresh_copy():
    p = cfg.default_pricing()
    p["markup"]["profit_pct"] = 99
    assert cfg.DEFAULT_PRICING["markup"]["profit_pct"] == 15
    assert cfg.default_pricing()["markup"]["profit_pct"] == 15


def test_parse_kv_override_types():
    out = cli.parse_kv_override(["markup.profit_pct=20", "energy_rate_kwh=0.2", "currency=EUR", "x.flag=true"])
    assert out == {"markup": {"profit_pct": 20}, "energy_rate_kwh": 0.2, "currency": "EUR", "x": {"flag": True}}
    with pytest.raises(ValueError):
        cli.parse_kv_override(["no_equals_sign"])


def test_override_applies_on_top_of_file(tmp_path):
    _write_configs(tmp_path, pricing={"markup": {"profit_pct": 20}})
    _, _, pricing, _ = cli.load_configs_via_core(str(tmp_path), {"markup": {"profit_pct": 25}})
    assert pricing["markup"]["profit_pct"] == 25


def test_invalid_reuse_rate_in_file_is_config_error(tmp_path):
    _write_configs(tmp_path, materials={"Bad": {"cost_per_cm3": 0.1, "reuse_rate": 1.5}})
    with pytest.raises(cli.ConfigError, match="reuse_rate"):
        cli.load_configs_via_core(str(tmp_path))
    with pytest.raises(InvalidParameterError):
        cfg.load_materials_json(str(tmp_path / "materials.json"))


def test_missing_key_is_config_error(tmp_path):
    _write_configs(tmp_path, materials={"NoCost": {"reuse_rate": 0.5}})
    with pytest.raises(cli.ConfigError, match="missing cost_per_cm3"):
        cli.load_configs_via_core(str(tmp_path))


def test_bad_time_distribution_is_config_error(tmp_path):
    machines = json.loads(json.dumps(cfg.DEFAULT_MACHINES))
    machines["HP Jet Fusion 5200"]["time_distribution"]["maintenance"] = 0.5
    _write_configs(tmp_path, machines=machines)
    with pytest.raises(cli.ConfigError, match="sum to 1"):
        cli.load_configs_via_core(str(tmp_path))


def test_missing_file_and_broken_json(tmp_path):
    with pytest.raises(cli.ConfigError, match="не найден"):
        cli.load_configs_via_core(str(tmp_path))
    _write_configs(tmp_path)
    (tmp_path / "pricing.json").write_text("{broken", encoding="utf-8")
    with pytest.raises(cli.ConfigError, match="pricing.json"):
        cli.load_configs_via_core(str(tmp_path))


def test_finalize_json_payload_with_errors():
    payload = {
        "success": True,
        "count": 2,
        "quotes": [{"file": "ok.stl"}],
        "summary": None,
    }
    errors = [{"file": "bad.stl", "error": "boom"}]

    out = cli.finalize_json_payload(payload, errors, count_ok=1)

    assert out["success"] is False
    assert out["count_failed"] == len(errors)
    assert out["count_ok"] == 1
    assert out["errors"][0]["file"] == "bad.stl"
    assert out["errors"][0]["error"] == "boom"


@pytest.mark.parametrize(
    "override, section",
    [
        ("labor=1", "labor"),
        ("post_processing=5", "post_processing"),
        ("time=0", "time"),
        ("markup=true", "markup"),
        ("labor.qc=2", "qc"),
    ],
)
def test_scalar_in_place_of_section_is_config_error(tmp_path, override, section):
    _write_configs(tmp_path)
    with pytest.raises(cli.ConfigError, match=f"{section} must be an object"):
        cli.load_configs_via_core(str(tmp_path), cli.parse_kv_override([override]))


def test_scalar_section_override_exits_2_from_cli(tmp_path):
    stl = write_binary_stl(tmp_path / "c.stl", cube_triangles())
    completed = run_cli([str(stl), "--json", "--set", "labor=1"], cwd=repo_root())
    assert completed.returncode == 2
    assert "labor must be an object" in completed.stderr
    assert "Traceback" not in completed.stderr


@pytest.mark.parametrize("key", ["density_g_cm3"])
def test_null_in_materials_is_config_error(tmp_path, key):
    _write_configs(tmp_path, materials={"PA12": {"cost_per_cm3": 0.17, "reuse_rate": 0.8, key: None}})
    with pytest.raises(cli.ConfigError, match=f"{key} must be a number"):
        cli.load_configs_via_core(str(tmp_path))


@pytest.mark.parametrize(
    "patch, message",
    [
        ({"failure_rate": None}, "failure_rate must be a number"),
        ({"chamber_mm": [380, None, 380]}, "chamber_mm must be a number"),
        ({"time_distribution": {"printing": 0.6, "cooling": None, "maintenance": 0.1}}, "cooling must be a number"),
        ({"time_distribution": {"printing": 0.6, "cooling": 0.3, "maintenance": None}}, "maintenance must be a number"),
        ({"chamber_mm": [380, 0, 380]}, r"chamber_mm\[1\] must be > 0"),
    ],
)
def test_bad_values_in_machines_are_config_errors(tmp_path, patch, message):
    machines = json.loads(json.dumps(cfg.DEFAULT_MACHINES))
    machines["HP Jet Fusion 5200"].update(patch)
    _write_configs(tmp_path, machines=machines)
    with pytest.raises(cli.ConfigError, match=message):
        cli.load_configs_via_core(str(tmp_path))


def test_negative_density_in_materials_is_rejected(tmp_path):
    _write_configs(tmp_path, materials={"PA12": {"cost_per_cm3": 0.17, "reuse_rate": 0.8, "density_g_cm3": -1}})
    with pytest.raises(cli.ConfigError, match="density must be > 0"):
        cli.load_configs_via_core(str(tmp_path))


def test_negative_rate_override_is_config_error(tmp_path):
    _write_configs(tmp_path)
    with pytest.raises(cli.ConfigError, match="energy_rate_kwh must be >= 0"):
        cli.load_configs_via_core(str(tmp_path), {"energy_rate_kwh": -0.1})
    with pytest.raises(cli.ConfigError, match="cost must be >= 0"):
        cli.load_configs_via_core(str(tmp_path), {"post_processing": {"basic": {"cost": -1}}})
