# -*- coding: utf-8 -*-
"""
pricing_core.py — параметрическая модель стоимости PBF-печати (MJF/SLS).

Чистая функция calculate_price(): геометрия + материал + машина + уровень постобработки
(+ опционально тираж) -> PriceBreakdown. Никакого глобального состояния: все таблицы
приходят аргументами (см. config_core).

Контракт округления:
- каждая статья округляется до 2 знаков сразу при расчёте (round());
- время печати тоже округляется до 2 знаков и дальше используется уже округлённым;
- промежуточная сумма = round(сумма округлённых статей, 2);
- итог = round(subtotal × (1 + (overhead_pct + profit_pct)/100), 2);
  overhead = round(subtotal × overhead_pct/100, 2), profit = остаток до итога.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields
from typing import Optional, Tuple

from geometry_core import GeometryMetrics
from quote_errors import InvalidParameterError


# ---------- Параметры ----------
@dataclass(frozen=True)
class MaterialParameters:
    name: str
    cost_per_cm3: float
    reuse_rate: float
    density: float = 1.0          # г/см³


@dataclass(frozen=True)
class TimeDistribution:
    printing: float
    cooling: float
    maintenance: float

    @property
    def active(self) -> float:
        return self.printing + self.cooling


@dataclass(frozen=True)
class MachineParameters:
    name: str
    power_kw: float
    hourly_rate: float
    chamber_mm: Tuple[float, float, float]
    packing_density: float
    failure_rate: float
    time_distribution: TimeDistribution

    @property
    def chamber_cm3(self) -> float:
        x, y, z = self.chamber_mm
        return (x * y * z) / 1000.0


@dataclass(frozen=True)
class PostProcessingTier:
    key: str                      # basic / medium / advanced
    name: str
    cost: float
    additional_time_h: float
    cost_per_cm3: float = 0.0


@dataclass(frozen=True)
class OperatingCosts:
    energy_rate_kwh: float = 0.12
    setup_time_h: float = 1.5
    setup_rate: float = 32.0
    post_processing_base_h: float = 0.5
    processing_rate: float = 28.0
    qc_time_h: float = 0.25
    qc_rate: float = 38.0
    layer_thickness_mm: float = 0.08
    preheat_h: float = 0.5
    per_layer_h: float = 0.002
    cooling_h_per_cm3: float = 0.001
    recoat_overhead_h: float = 0.1
    reused_powder_discount: float = 0.3
    overhead_pct: float = 15.0
    profit_pct: float = 15.0

    @property
    def markup_factor(self) -> float:
        return 1.0 + (self.overhead_pct + self.profit_pct) / 100.0


@dataclass(frozen=True)
class BatchContext:
    """Заказ из quantity одинаковых деталей; включает грубую оценку эффективности общей камеры."""
    quantity: int = 1


# ---------- Результат ----------
@dataclass(frozen=True)
class MaterialDetails:
    volume: float
    effective_volume: float
    cost_per_cm3: float
    reuse_rate: float
    packing_density: float
    weight_g: float


@dataclass(frozen=True)
class TimeDetails:
    print_time: float
    layer_count: int
    part_height_mm: float
    setup_time: float
    post_processing_time: float
    qc_time: float


@dataclass(frozen=True)
class LaborDetails:
    setup: float
    processing: float
    qc: float


@dataclass(frozen=True)
class BatchDetails:
    quantity: int
    parts_per_build: int
    builds_required: int
    batch_efficiency: float
    order_total: float


@dataclass(frozen=True)
class PriceBreakdown:
    material_cost: float
    machine_cost: float
    labor_cost: float
    power_cost: float
    post_processing_cost: float
    qc_cost: float                # доля labor_cost (контроль качества), в subtotal второй раз не входит
    overhead: float
    profit: float
    subtotal: float
    total: float
    print_time: float             # ч
    material_details: MaterialDetails
    time_details: TimeDetails
    labor_details: LaborDetails
    batch_details: Optional[BatchDetails] = field(default=None)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------- Валидация ----------
def _is_pos(v) -> bool:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return False
    return math.isfinite(f) and f > 0


def _is_nonneg(v) -> bool:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return False
    return math.isfinite(f) and f >= 0


def _require_nonneg(owner: str, field_name: str, value) -> None:
    if not _is_nonneg(value):
        raise InvalidParameterError(f"{owner}: {field_name} must be >= 0, got: {value!r}")


def validate_volume(volume: float) -> float:
    if not _is_pos(volume):
        raise InvalidParameterError(f"volume must be > 0, got: {volume!r}")
    return float(volume)


def validate_material(material: MaterialParameters) -> MaterialParameters:
    if not _is_pos(material.reuse_rate) or material.reuse_rate > 1.0:
        raise InvalidParameterError(f"{material.name}: reuse_rate must be in (0, 1], got: {material.reuse_rate!r}")
    _require_nonneg(material.name, "cost_per_cm3", material.cost_per_cm3)
    if not _is_pos(material.density):
        raise InvalidParameterError(f"{material.name}: density must be > 0, got: {material.density!r}")
    return material


def validate_machine(machine: MachineParameters) -> MachineParameters:
    if not _is_pos(machine.packing_density) or machine.packing_density > 1.0:
        raise InvalidParameterError(
            f"{machine.name}: packing_density must be in (0, 1], got: {machine.packing_density!r}"
        )
    for name in ("failure_rate", "power_kw", "hourly_rate"):
        _require_nonneg(machine.name, name, getattr(machine, name))
    for i, side in enumerate(machine.chamber_mm):
        if not _is_pos(side):
            raise InvalidParameterError(f"{machine.name}: chamber_mm[{i}] must be > 0, got: {side!r}")
    td = machine.time_distribution
    if not _is_pos(td.printing):
        raise InvalidParameterError(f"{machine.name}: time_distribution.printing must be > 0, got: {td.printing!r}")
    for name in ("printing", "cooling", "maintenance"):
        share = getattr(td, name)
        if not _is_nonneg(share) or share > 1.0:
            raise InvalidParameterError(
                f"{machine.name}: time_distribution.{name} must be in [0, 1], got: {share!r}"
            )
    total = td.printing + td.cooling + td.maintenance
    if abs(total - 1.0) > 1e-6:
        raise InvalidParameterError(f"{machine.name}: time_distribution must sum to 1, got: {total!r}")
    return machine


def validate_operating(operating: OperatingCosts) -> OperatingCosts:
    """Ставки, времена и проценты не меньше 0; толщина слоя строго больше 0."""
    for f in fields(operating):
        _require_nonneg("pricing", f.name, getattr(operating, f.name))
    if not _is_pos(operating.layer_thickness_mm):
        raise InvalidParameterError(
            f"pricing: layer_thickness_mm must be > 0, got: {operating.layer_thickness_mm!r}"
        )
    return operating


def validate_tier(tier: PostProcessingTier) -> PostProcessingTier:
    for name in ("cost", "additional_time_h", "cost_per_cm3"):
        _require_nonneg(f"post_processing.{tier.key}", name, getattr(tier, name))
    return tier


def coerce_qty(qty) -> int:
    """Приводит qty к int и валидирует (>=1)."""
    try:
        q = int(qty)
    except (TypeError, ValueError) as e:
        raise InvalidParameterError(f"qty must be int >= 1, got: {qty!r}") from e
    if q < 1:
        raise InvalidParameterError(f"qty must be int >= 1, got: {qty!r}")
    return q


# ---------- Формулы ----------
def material_cost(volume: float, material: MaterialParameters, machine: MachineParameters,
                  operating: OperatingCosts) -> float:
    """Новый порошок по полной цене + переиспользованный со скидкой (деградация порошка)."""
    eff = volume / machine.packing_density
    cpv = material.cost_per_cm3
    reuse = material.reuse_rate
    return round(
        eff * (1 - reuse) * cpv + eff * reuse * cpv * operating.reused_powder_discount, 2
    )


def estimate_part_height_mm(metrics: GeometryMetrics) -> float:
    """Высота из выбранной ориентации; если её нет (0) — оценка по кубическому корню объёма."""
    oriented = metrics.optimal_orientation.height_mm if metrics.optimal_orientation else 0.0
    if oriented and oriented > 0 and math.isfinite(oriented):
        return float(oriented)
    return float(metrics.volume ** (1.0 / 3.0) * 10.0)


def layer_count(part_height_mm: float, operating: OperatingCosts) -> int:
    return int(math.ceil(part_height_mm / operating.layer_thickness_mm))


def estimate_print_time_hours(metrics: GeometryMetrics, machine: MachineParameters,
                              operating: OperatingCosts) -> float:
    """
    Активное время (прогрев + слои + остывание по объёму + перекрытие рекоутера),
    делённое на долю печати — получаем полное «настенное» время машины, ч.
    """
    layers = layer_count(estimate_part_height_mm(metrics), operating)
    active = (
        operating.preheat_h
        + layers * operating.per_layer_h
        + metrics.volume * operating.cooling_h_per_cm3
        + operating.recoat_overhead_h
    )
    return round(active / machine.time_distribution.printing, 2)


def parts_per_build(volume: float, machine: MachineParameters) -> int:
    capacity = machine.chamber_cm3 * machine.packing_density
    return max(1, int(math.floor(capacity / volume)))


def batch_efficiency(volume: float, machine: MachineParameters) -> float:
    return min(1.0, 1.0 / parts_per_build(volume, machine))


def machine_cost(print_time: float, machine: MachineParameters, efficiency: float = 1.0) -> float:
    failure_multiplier = 1.0 + machine.failure_rate
    return round(machine.hourly_rate * print_time * failure_multiplier * efficiency, 2)


def power_cost(print_time: float, machine: MachineParameters, operating: OperatingCosts) -> float:
    return round(
        machine.power_kw * machine.time_distribution.active * print_time * operating.energy_rate_kwh, 2
    )


def post_processing_time_hours(metrics: GeometryMetrics, tier: PostProcessingTier,
                               operating: OperatingCosts) -> float:
    # сложная геометрия дольше чистится; множитель не меньше 1
    complexity = metrics.complexity if math.isfinite(metrics.complexity) else 1.0
    return operating.post_processing_base_h + tier.additional_time_h * max(1.0, complexity)


def labor_costs(metrics: GeometryMetrics, tier: PostProcessingTier, operating: OperatingCosts) -> LaborDetails:
    return LaborDetails(
        setup=round(operating.setup_time_h * operating.setup_rate, 2),
        processing=round(post_processing_time_hours(metrics, tier, operating) * operating.processing_rate, 2),
        qc=round(operating.qc_time_h * operating.qc_rate, 2),
    )


def post_processing_cost(volume: float, tier: PostProcessingTier) -> float:
    return round(tier.cost + tier.cost_per_cm3 * volume, 2)


# ---------- Полный расчёт ----------
def calculate_price(
    metrics: GeometryMetrics,
    material: MaterialParameters,
    machine: MachineParameters,
    tier: PostProcessingTier,
    *,
    operating: OperatingCosts | None = None,
    batch: BatchContext | None = None,
) -> PriceBreakdown:
    """
    Геометрия + параметры -> PriceBreakdown (все деньги округлены до 2 знаков).
    InvalidParameterError — если объём/плотность упаковки/reuse rate и т.п. вне допустимых значений.
    """
    op = operating or OperatingCosts()
    volume = validate_volume(metrics.volume)
    validate_material(material)
    validate_machine(machine)
    validate_operating(op)
    validate_tier(tier)
    qty = coerce_qty(batch.quantity) if batch is not None else 1

    mat = material_cost(volume, material, machine, op)

    height_mm = estimate_part_height_mm(metrics)
    layers = layer_count(height_mm, op)
    t_print = estimate_print_time_hours(metrics, machine, op)

    efficiency = 1.0
    batch_details = None
    if batch is not None:
        per_build = parts_per_build(volume, machine)
        efficiency = batch_efficiency(volume, machine)

    mach = machine_cost(t_print, machine, efficiency)
    pwr = power_cost(t_print, machine, op)
    labor = labor_costs(metrics, tier, op)
    labor_total = round(labor.setup + labor.processing + labor.qc, 2)
    post = post_processing_cost(volume, tier)

    subtotal = round(mat + mach + labor_total + pwr + post, 2)
    total = round(subtotal * op.markup_factor, 2)
    overhead = round(subtotal * op.overhead_pct / 100.0, 2)
    profit = round(total - subtotal - overhead, 2)

    if batch is not None:
        batch_details = BatchDetails(
            quantity=qty,
            parts_per_build=per_build,
            builds_required=int(math.ceil(qty / per_build)),
            batch_efficiency=efficiency,
            order_total=round(total * qty, 2),
        )

    eff_volume = volume / machine.packing_density
    return PriceBreakdown(
        material_cost=mat,
        machine_cost=mach,
        labor_cost=labor_total,
        power_cost=pwr,
        post_processing_cost=post,
        qc_cost=labor.qc,
        overhead=overhead,
        profit=profit,
        subtotal=subtotal,
        total=total,
        print_time=t_print,
        material_details=MaterialDetails(
            volume=volume,
            effective_volume=eff_volume,
            cost_per_cm3=material.cost_per_cm3,
            reuse_rate=material.reuse_rate,
            packing_density=machine.packing_density,
            weight_g=volume * material.density,
        ),
        time_details=TimeDetails(
            print_time=t_print,
            layer_count=layers,
            part_height_mm=height_mm,
            setup_time=op.setup_time_h,
            post_processing_time=post_processing_time_hours(metrics, tier, op),
            qc_time=op.qc_time_h,
        ),
        labor_details=labor,
        batch_details=batch_details,
    )


# ---------- Форматирование отчёта (общий для CLI/внешнего UI) ----------
def _hm(hours: float) -> str:
    hours = max(0.0, float(hours))
    h = int(hours)
    m = int(round((hours - h) * 60))
    return f"{h}ч {m:02d}м"


def _money(v: float, currency: str = "$") -> str:
    return f"{currency}{float(v):,.2f}"


def _line(label: str, value: float, width: int = 12, currency: str = "$") -> str:
    return f"  {label:<30}{_money(value, currency):>{width}}\n"


def render_report(
    *,
    file_name: str,
    metrics: GeometryMetrics,
    price: PriceBreakdown,
    material_name: str,
    machine_name: str,
    tier_name: str,
    calc_time_s: float,
    brief: bool = True,
    diag_text: str = "",
    currency: str = "$",
) -> str:
    head = []
    if diag_text:
        head.append(diag_text.rstrip() + "\n")
    bb = metrics.bounding_box
    o = metrics.optimal_orientation
    head.append(f"Деталь: {file_name}\n")
    head.append(f"• Объём: {metrics.volume:.2f} см³ | Поверхность: {metrics.surface_area:.2f} см²\n")
    head.append(f"• Габариты: {bb.x:.2f} × {bb.y:.2f} × {bb.z:.2f} см\n")
    head.append(f"• Ориентация: {o.label} (высота {o.height:.2f} см, поддержки {'нужны' if metrics.support_required else 'не нужны'})\n")
    head.append(f"• Материал: {material_name} | Машина: {machine_name} | Постобработка: {tier_name}\n")
    head.append(f"• Время печати: {_hm(price.print_time)}\n")
    head.append("-" * 44 + "\n")

    b = []
    b.append(_line("Материал", price.material_cost, currency=currency))
    b.append(_line("Машинное время", price.machine_cost, currency=currency))
    if brief:
        other = price.labor_cost + price.power_cost + price.post_processing_cost
        b.append(_line("Прочие (труд, энергия, постобр.)", other, currency=currency))
    else:
        b.append(_line("Труд", price.labor_cost, currency=currency))
        b.append(_line("  в т.ч. контроль качества", price.qc_cost, currency=currency))
        b.append(_line("Электроэнергия", price.power_cost, currency=currency))
        b.append(_line("Постобработка", price.post_processing_cost, currency=currency))
    b.append(_line("Промежуточная сумма", price.subtotal, currency=currency))
    if not brief:
        b.append(_line("Накладные", price.overhead, currency=currency))
        b.append(_line("Прибыль", price.profit, currency=currency))
    b.append("-" * 44 + "\n")
    b.append(f"ИТОГО: {_money(price.total, currency)}\n")
    bd = price.batch_details
    if bd is not None and bd.quantity > 1:
        b.append(
            f"Тираж: {bd.quantity} шт. → {_money(bd.order_total, currency)} "
            f"({bd.parts_per_build} шт./камера, сборок: {bd.builds_required})\n"
        )
    b.append(f"Время расчёта: {calc_time_s:.4f} с\n")
    return "".join(head + b)
