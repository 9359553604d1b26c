# -*- coding: utf-8 -*-
"""
config_core.py — таблицы параметров (материалы, машины, постобработка, операционные расходы).

Источник правды — JSON-файлы рядом с модулем (или в --config-dir):
- materials.json: { "PA12": {"cost_per_cm3": 0.17, "reuse_rate": 0.8, "density_g_cm3": 1.01}, ... }
- machines.json:  { "HP Jet Fusion 5200": {"power_kw": 14.5, "hourly_rate": 45, "chamber_mm": [380, 284, 380],
                    "packing_density": 0.0638, "failure_rate": 0.05,
                    "time_distribution": {"printing": 0.6, "cooling": 0.3, "maintenance": 0.1}} }
- pricing.json:   операционные расходы + уровни постобработки; мерджится поверх DEFAULT_PRICING.

Модуль ничего не кэширует: каждый вызов читает файл заново и отдаёт новые объекты.
"""
from __future__ import annotations

import json
import os
from typing import Dict

from pricing_core import (
    MachineParameters,
    MaterialParameters,
    OperatingCosts,
    PostProcessingTier,
    TimeDistribution,
    validate_machine,
    validate_material,
    validate_operating,
    validate_tier,
)

# ---------- Defaults ----------
DEFAULT_MATERIALS = {
    "PA12": {"cost_per_cm3": 0.17, "reuse_rate": 0.80, "density_g_cm3": 1.01},
}

DEFAULT_MACHINES = {
    "HP Jet Fusion 5200": {
        "power_kw": 14.5,
        "hourly_rate": 45.0,
        "chamber_mm": [380, 284, 380],
        "packing_density": 0.0638,
        "failure_rate": 0.05,
        "time_distribution": {"printing": 0.6, "cooling": 0.3, "maintenance": 0.1},
    },
}

DEFAULT_PRICING = {
    "currency": "USD",
    "energy_rate_kwh": 0.12,
    "labor": {
        "setup": {"time_h": 1.5, "rate": 32.0},
        "processing": {"base_time_h": 0.5, "rate": 28.0},
        "qc": {"time_h": 0.25, "rate": 38.0},
    },
    "time": {
        "layer_thickness_mm": 0.08,
        "preheat_h": 0.5,
        "per_layer_h": 0.002,
        "cooling_h_per_cm3": 0.001,
        "recoat_overhead_h": 0.1,
    },
    "material": {"reused_powder_discount": 0.3},
    "markup": {"overhead_pct": 15, "profit_pct": 15},
    "post_processing": {
        "basic": {"name": "Basic Cleaning", "cost": 25.0, "additional_time_h": 0.5, "cost_per_cm3": 0.0},
        "medium": {"name": "Surface Smoothing", "cost": 50.0, "additional_time_h": 1.0, "cost_per_cm3": 0.05},
        "advanced": {"name": "Dyeing and Finishing", "cost": 100.0, "additional_time_h": 2.0, "cost_per_cm3": 0.10},
    },
}

POST_PROCESSING_LEVELS = ("basic", "medium", "advanced")


# ---------- Утилиты ----------
def deep_merge(dst: dict, src: dict) -> dict:
    """Глубокое слияние словарей src в dst (in-place). Возвращает dst."""
    for k, v in (src or {}).items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            deep_merge(dst[k], v)
        else:
            dst[k] = v
    return dst


def _copy(d: dict) -> dict:
    return json.loads(json.dumps(d))


def _num(row: dict, key: str, where: str, default: float | None = None) -> float:
    if key not in row:
        if default is not None:
            return float(default)
        raise ValueError(f"{where}: missing {key}")
    try:
        return float(row[key])
    except (TypeError, ValueError):
        raise ValueError(f"{where}: {key} must be a number, got: {row[key]!r}") from None


def _section(d: dict, key: str, where: str) -> dict:
    """Вложенный раздел конфига; отсутствующий раздел = {}, скаляр вместо объекта — ошибка."""
    value = d.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"{where}: {key} must be an object")
    return value


# ---------- Пути ----------
def get_default_config_dir() -> str:
    """Папка с materials.json / machines.json / pricing.json по умолчанию: рядом с модулем."""
    return os.path.dirname(os.path.abspath(__file__))


def get_default_materials_path(config_dir: str | None = None) -> str:
    return os.path.join(config_dir or get_default_config_dir(), "materials.json")


def get_default_machines_path(config_dir: str | None = None) -> str:
    return os.path.join(config_dir or get_default_config_dir(), "machines.json")


def get_default_pricing_path(config_dir: str | None = None) -> str:
    return os.path.join(config_dir or get_default_config_dir(), "pricing.json")


def _read_json_object(path: str, label: str) -> dict:
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict) or not data:
        raise ValueError(f"{label}: expected object")
    return data


# ---------- Разбор таблиц ----------
def parse_materials(data: dict) -> Dict[str, MaterialParameters]:
    out = {}
    for name, row in data.items():
        where = f"materials.json: '{name}'"
        if not isinstance(row, dict):
            raise ValueError(f"materials.json: invalid row for '{name}'")
        out[name] = validate_material(MaterialParameters(
            name=name,
            cost_per_cm3=_num(row, "cost_per_cm3", where),
            reuse_rate=_num(row, "reuse_rate", where),
            density=_num(row, "density_g_cm3", where, default=1.0),
        ))
    return out


def parse_machines(data: dict) -> Dict[str, MachineParameters]:
    out = {}
    for name, row in data.items():
        where = f"machines.json: '{name}'"
        if not isinstance(row, dict):
            raise ValueError(f"machines.json: invalid row for '{name}'")
        chamber = row.get("chamber_mm")
        if not isinstance(chamber, (list, tuple)) or len(chamber) != 3:
            raise ValueError(f"{where}: chamber_mm must be [x, y, z]")
        td = row.get("time_distribution")
        if not isinstance(td, dict):
            raise ValueError(f"{where}: missing time_distribution")
        out[name] = validate_machine(MachineParameters(
            name=name,
            power_kw=_num(row, "power_kw", where),
            hourly_rate=_num(row, "hourly_rate", where),
            chamber_mm=tuple(_num({"chamber_mm": c}, "chamber_mm", where) for c in chamber),
            packing_density=_num(row, "packing_density", where),
            failure_rate=_num(row, "failure_rate", where, default=0.0),
            time_distribution=TimeDistribution(
                printing=_num(td, "printing", where),
                cooling=_num(td, "cooling", where, default=0.0),
                maintenance=_num(td, "maintenance", where, default=0.0),
            ),
        ))
    return out


def operating_costs_from_pricing(pricing: dict) -> OperatingCosts:
    p = pricing or {}
    where = "pricing.json"
    labor = _section(p, "labor", where)
    setup = _section(labor, "setup", "pricing.json: labor")
    processing = _section(labor, "processing", "pricing.json: labor")
    qc = _section(labor, "qc", "pricing.json: labor")
    t = _section(p, "time", where)
    material = _section(p, "material", where)
    markup = _section(p, "markup", where)
    d = OperatingCosts()
    return validate_operating(OperatingCosts(
        energy_rate_kwh=_num(p, "energy_rate_kwh", where, d.energy_rate_kwh),
        setup_time_h=_num(setup, "time_h", "pricing.json: labor.setup", d.setup_time_h),
        setup_rate=_num(setup, "rate", "pricing.json: labor.setup", d.setup_rate),
        post_processing_base_h=_num(processing, "base_time_h", "pricing.json: labor.processing", d.post_processing_base_h),
        processing_rate=_num(processing, "rate", "pricing.json: labor.processing", d.processing_rate),
        qc_time_h=_num(qc, "time_h", "pricing.json: labor.qc", d.qc_time_h),
        qc_rate=_num(qc, "rate", "pricing.json: labor.qc", d.qc_rate),
        layer_thickness_mm=_num(t, "layer_thickness_mm", "pricing.json: time", d.layer_thickness_mm),
        preheat_h=_num(t, "preheat_h", "pricing.json: time", d.preheat_h),
        per_layer_h=_num(t, "per_layer_h", "pricing.json: time", d.per_layer_h),
        cooling_h_per_cm3=_num(t, "cooling_h_per_cm3", "pricing.json: time", d.cooling_h_per_cm3),
        recoat_overhead_h=_num(t, "recoat_overhead_h", "pricing.json: time", d.recoat_overhead_h),
        reused_powder_discount=_num(material, "reused_powder_discount", "pricing.json: material", d.reused_powder_discount),
        overhead_pct=_num(markup, "overhead_pct", "pricing.json: markup", d.overhead_pct),
        profit_pct=_num(markup, "profit_pct", "pricing.json: markup", d.profit_pct),
    ))


def post_processing_tiers(pricing: dict) -> Dict[str, PostProcessingTier]:
    rows = _section(pricing or {}, "post_processing", "pricing.json")
    out = {}
    for key in POST_PROCESSING_LEVELS:
        row = rows.get(key)
        if not isinstance(row, dict):
            raise ValueError(f"pricing.json: post_processing.{key} missing")
        where = f"pricing.json: post_processing.{key}"
        out[key] = validate_tier(PostProcessingTier(
            key=key,
            name=str(row.get("name", key)),
            cost=_num(row, "cost", where),
            additional_time_h=_num(row, "additional_time_h", where),
            cost_per_cm3=_num(row, "cost_per_cm3", where, default=0.0),
        ))
    return out


# ---------- Загрузка файлов ----------
def load_materials_json(path: str) -> Dict[str, MaterialParameters]:
    """materials.json -> {name: MaterialParameters}"""
    return parse_materials(_read_json_object(path, "materials.json"))


def load_machines_json(path: str) -> Dict[str, MachineParameters]:
    """machines.json -> {name: MachineParameters}"""
    return parse_machines(_read_json_object(path, "machines.json"))


def load_pricing_json(path: str, *, base: dict | None = None, override: dict | None = None) -> dict:
    """
    pricing.json -> pricing dict.
    base: если задан, то в него мерджится файл (удобно для DEFAULT_PRICING).
    override: мердж поверх результата (например, --set в CLI).
    """
    cfg = _read_json_object(path, "pricing.json")
    out = _copy(base) if isinstance(base, dict) else {}
    deep_merge(out, cfg)
    if override:
        deep_merge(out, override)
    return out


def default_materials() -> Dict[str, MaterialParameters]:
    return parse_materials(_copy(DEFAULT_MATERIALS))


def default_machines() -> Dict[str, MachineParameters]:
    return parse_machines(_copy(DEFAULT_MACHINES))


def default_pricing() -> dict:
    return _copy(DEFAULT_PRICING)
