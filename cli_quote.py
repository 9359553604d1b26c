# -*- coding: utf-8 -*-
"""
CLI-версия калькулятора PBF-печати (MJF/SLS)
— серверная утилита без UI: бинарный STL -> геометрия -> смета.

Примеры:
  python cli_quote.py part.stl --material PA12 --post medium --json
  python cli_quote.py a.stl b.stl --qty 50 --full --diag

Ключевые гарантии:
• Каждый файл считается независимо: декодер/анализ/цена — чистые функции без глобального состояния.
• Таблицы materials.json / machines.json / pricing.json (+ точечные override'ы флагом --set).
• Параллель по файлам (--workers N) с детерминированной сортировкой результатов.

Стабильный JSON-контракт (--json):
  {
    "success": <bool>,
    "count": <int>,                  # число файлов во входе
    "count_ok": <int>,
    "count_failed": <int>,
    "errors": [{"file": "<имя>", "path": "<путь как передан>", "error": "<текст>"}, ...],
    "quotes": [
      {
        "file": "<имя файла>",
        "path": "<путь как передан>",
        "material": "<строка>",
        "machine": "<строка>",
        "post_processing": "basic|medium|advanced",
        "qty": <int>,
        "geometry": {volume_cm3, surface_area_cm2, bounding_box_cm, optimal_orientation, complexity, ...},
        "price": {material_cost, machine_cost, labor_cost, power_cost, post_processing_cost,
                  qc_cost, overhead, profit, subtotal, total, print_time, ...details}
      },
      ...
    ],
    "summary": {"total": <float>, "order_total": <float>},
    "time_s": <float>
  }

Коды возврата: 0 — успех; 1 — хотя бы один файл не посчитан; 2 — ошибка аргументов/конфигурации.
"""
from __future__ import annotations

import os, sys, json, time, argparse
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import List

import config_core as cfg
from geometry_core import analyze_mesh, mesh_diagnostics_text
from mesh_core import read_stl_file
from pricing_core import BatchContext, calculate_price, coerce_qty, render_report

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_FILES = ("materials.json", "machines.json", "pricing.json")


# ---------- Утилиты ----------
def set_by_dotted_path(d: dict, path: str, value):
    """Устанавливает значение по точечному пути (например, 'labor.qc.rate'). Создаёт вложенные словари при необходимости."""
    keys = path.split('.')
    cur = d
    for k in keys[:-1]:
        if k not in cur or not isinstance(cur[k], dict):
            cur[k] = {}
        cur = cur[k]
    cur[keys[-1]] = value


def parse_kv_override(pairs):
    """Парсит список key=val оверрайдов из CLI (--set). Пытается привести val к bool/int/float, иначе оставляет строкой."""
    out = {}
    for kv in pairs or []:
        if '=' not in kv:
            raise ValueError(f"Неверный формат override '{kv}', нужен key=val")
        k, v = kv.split('=', 1)
        vv = v
        try:
            if v.lower() in ('true', 'false'):
                vv = (v.lower() == 'true')
            elif '.' in v:
                vv = float(v)
            else:
                vv = int(v)
        except ValueError:
            pass
        set_by_dotted_path(out, k, vv)
    return out


# ---------- Загрузка конфигов ----------
class ConfigError(Exception):
    """Ошибка конфигурации CLI (нет файла, неверный JSON, валидация и т.д.)."""


def resolve_config_paths(config_dir: str | None = None) -> tuple[str, str, str]:
    """Пути к materials/machines/pricing.json по config_dir, cwd (если там все три) или папке скрипта."""
    if config_dir:
        base_dir = os.path.abspath(os.path.expanduser(config_dir))
    else:
        cwd = os.getcwd()
        if all(os.path.exists(os.path.join(cwd, name)) for name in CONFIG_FILES):
            base_dir = cwd
        else:
            base_dir = BASE_DIR
    return tuple(os.path.join(base_dir, name) for name in CONFIG_FILES)  # type: ignore[return-value]


def _load(loader, path: str, label: str, **kwargs):
    try:
        return loader(path, **kwargs)
    except FileNotFoundError as e:
        raise ConfigError(f"Файл конфигурации не найден: {e.filename or e}") from None
    except json.JSONDecodeError as e:
        raise ConfigError(f"{label}: ошибка JSON ({e.msg}, строка {e.lineno}, колонка {e.colno})") from None
    except (TypeError, ValueError) as e:
        raise ConfigError(str(e)) from None


def load_configs_via_core(config_dir: str | None, override: dict | None = None) -> tuple[dict, dict, dict, tuple]:
    """Загружает все три таблицы через config_core как единую точку правды."""
    paths = resolve_config_paths(config_dir)
    materials_path, machines_path, pricing_path = paths
    materials = _load(cfg.load_materials_json, materials_path, "materials.json")
    machines = _load(cfg.load_machines_json, machines_path, "machines.json")
    pricing = _load(cfg.load_pricing_json, pricing_path, "pricing.json", base=cfg.DEFAULT_PRICING, override=override)
    try:
        # проверяем, что pricing разбирается целиком, до расчёта файлов
        cfg.operating_costs_from_pricing(pricing)
        cfg.post_processing_tiers(pricing)
    except (TypeError, ValueError) as e:
        raise ConfigError(str(e)) from None
    return materials, machines, pricing, paths


def finalize_json_payload(payload: dict, errors: List[dict], count_ok: int) -> dict:
    """Добавляет поля ошибок и итоговые счетчики для JSON-вывода."""
    payload["errors"] = list(errors)
    payload["count_failed"] = len(errors)
    payload["count_ok"] = int(count_ok)
    payload["success"] = len(errors) == 0
    return payload


# ---------- Расчёт одного файла ----------
def _quote_one_file(
    path: str,
    *,
    materials: dict,
    machines: dict,
    pricing: dict,
    material_name: str,
    machine_name: str,
    post_level: str,
    qty: int,
    batch: bool,
    brief: bool,
    diag: bool,
) -> dict:
    """Процесс-воркер: читает и считает один файл. Всё, что нужно, приходит аргументами."""
    t0 = time.perf_counter()

    if not os.path.exists(path):
        raise FileNotFoundError(f"file not found: {path}")

    mesh = read_stl_file(path)
    metrics = analyze_mesh(mesh)

    material = materials[material_name]
    machine = machines[machine_name]
    tier = cfg.post_processing_tiers(pricing)[post_level]
    operating = cfg.operating_costs_from_pricing(pricing)
    batch_ctx = BatchContext(quantity=int(qty)) if (batch or qty > 1) else None

    price = calculate_price(metrics, material, machine, tier, operating=operating, batch=batch_ctx)
    calc_seconds = time.perf_counter() - t0

    diag_text = mesh_diagnostics_text(mesh, metrics) if diag else ""
    currency = "$" if pricing.get("currency", "USD") == "USD" else f"{pricing.get('currency')} "
    text = render_report(
        file_name=os.path.basename(path),
        metrics=metrics,
        price=price,
        material_name=material.name,
        machine_name=machine.name,
        tier_name=tier.name,
        calc_time_s=calc_seconds,
        brief=brief,
        diag_text=diag_text,
        currency=currency,
    )

    return {
        "file": os.path.basename(path),
        "path": path,
        "material": material.name,
        "machine": machine.name,
        "post_processing": tier.key,
        "qty": int(qty),
        "geometry": metrics.to_dict(),
        "price": price.to_dict(),
        "calc_seconds": float(calc_seconds),
        "text": text,
    }


# ---------- Расчёт набора файлов ----------
def compute_for_files(
    files: List[str],
    *,
    materials: dict,
    machines: dict,
    pricing: dict,
    material_name: str,
    machine_name: str,
    post_level: str = "basic",
    qty: int = 1,
    batch: bool = False,
    brief: bool = True,
    diag: bool = False,
    as_json: bool = False,
    workers: int = 1,
    errors: List[dict] | None = None,
) -> dict:
    """
    Считает набор файлов с опциональной параллелью.
    Возвращает либо JSON payload (as_json=True), либо {"text": "..."}.
    """
    t0 = time.time()
    qty = coerce_qty(qty)

    results: List[dict] = []
    errors = errors if errors is not None else []
    file_list = list(files)
    job = dict(
        materials=materials, machines=machines, pricing=pricing,
        material_name=material_name, machine_name=machine_name, post_level=post_level,
        qty=qty, batch=batch, brief=brief, diag=diag,
    )

    if workers and workers > 1 and len(file_list) > 1:
        with ProcessPoolExecutor(max_workers=int(workers)) as ex:
            futs = {ex.submit(_quote_one_file, p, **job): p for p in file_list}
            for fut in as_completed(futs):
                path = futs[fut]
                try:
                    results.append(fut.result())
                except Exception as exc:
                    errors.append({"file": os.path.basename(path), "path": path, "error": str(exc)})
    else:
        for p in file_list:
            try:
                results.append(_quote_one_file(p, **job))
            except Exception as exc:
                errors.append({"file": os.path.basename(p), "path": p, "error": str(exc)})

    # стабильный порядок для вывода/тестов
    results.sort(key=lambda r: (r["file"], r["path"]))
    errors.sort(key=lambda e: (e["file"], e.get("path", "")))

    total = round(sum(r["price"]["total"] for r in results), 2)
    order_total = round(sum(
        (r["price"]["batch_details"] or {}).get("order_total", r["price"]["total"]) for r in results
    ), 2)
    calc_time_s = time.time() - t0

    if as_json:
        quotes = []
        for r in results:
            q = dict(r)
            q.pop("text", None)
            quotes.append(q)
        payload = {
            "success": True,
            "count": len(file_list),
            "quotes": quotes,
            "summary": {"total": total, "order_total": order_total},
            "time_s": calc_time_s,
        }
        return finalize_json_payload(payload, errors, len(results))

    parts = [r["text"] for r in results]
    if len(results) > 1:
        parts.append(f"ВСЕГО по {len(results)} файлам: {total:,.2f} (заказ: {order_total:,.2f})\n")
    return {"text": "\n".join(parts).rstrip()}


# ---------- CLI ----------
def main():
    """Точка входа CLI. Парсит аргументы, загружает конфиги, валидирует выбор, вызывает compute_for_files и печатает результат."""
    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    if hasattr(sys.stderr, "reconfigure"):
        sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    ap = argparse.ArgumentParser(description="CLI калькулятор PBF-печати — бинарный STL -> геометрия -> смета")
    ap.add_argument('files', nargs='+', help='Пути к моделям .stl (бинарный формат)')
    ap.add_argument('--config-dir', default=None, help='Папка с materials.json, machines.json, pricing.json (по умолчанию: cwd или рядом со скриптом)')
    ap.add_argument('--set', dest='overrides', action='append', help='Переопределить параметры pricing (format: key=val, напр. markup.profit_pct=20). Можно несколько раз.')

    ap.add_argument('--material', required=False, help='Название материала из materials.json')
    ap.add_argument('--machine', required=False, help='Название машины из machines.json')
    ap.add_argument('--post', choices=list(cfg.POST_PROCESSING_LEVELS), default='basic', help='Уровень постобработки')
    ap.add_argument('--qty', type=int, default=1, help='Количество одинаковых деталей в заказе (цена за деталь + итог заказа)')
    ap.add_argument('--batch', action='store_true', help='Учитывать совместную загрузку камеры (эффективность партии)')

    fmt = ap.add_mutually_exclusive_group()
    fmt.add_argument('--json', action='store_true', help='Вывод в JSON')
    fmt.add_argument('--text', action='store_true', help='Текстовый отчёт (по умолчанию)')

    ap.add_argument('--full', dest='brief', action='store_false', help='Полный отчёт (иначе краткий)')
    ap.add_argument('--diag', action='store_true', help='Добавить блок диагностики меша (ориентации, bbox)')
    ap.add_argument('--workers', type=int, default=1, help='Процессы для параллельной обработки файлов (>1 — включить мультипроцессинг)')

    args = ap.parse_args()

    try:
        args.qty = coerce_qty(args.qty)
    except ValueError as e:
        print(f"Неверное значение --qty: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        overrides = parse_kv_override(args.overrides)
    except ValueError as e:
        print(f"Неверный формат --set: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        materials, machines, pricing, paths = load_configs_via_core(args.config_dir, overrides)
    except ConfigError as e:
        print(f"Ошибка конфигурации: {e}", file=sys.stderr)
        sys.exit(2)

    for p in paths:
        print(f"[cli] using config: {p}", file=sys.stderr)

    material = args.material or sorted(materials.keys())[0]
    if material not in materials:
        print(f"Материал '{material}' не найден в {paths[0]}", file=sys.stderr)
        sys.exit(2)
    machine = args.machine or sorted(machines.keys())[0]
    if machine not in machines:
        print(f"Машина '{machine}' не найдена в {paths[1]}", file=sys.stderr)
        sys.exit(2)

    errors: List[dict] = []
    try:
        payload = compute_for_files(
            args.files,
            materials=materials, machines=machines, pricing=pricing,
            material_name=material, machine_name=machine, post_level=args.post,
            qty=int(args.qty), batch=bool(args.batch),
            brief=bool(args.brief), diag=bool(args.diag),
            as_json=bool(args.json),
            workers=int(max(1, args.workers)),
            errors=errors,
        )
    except Exception as e:
        print(f"Ошибка расчёта: {e}", file=sys.stderr)
        sys.exit(1)

    if errors and not args.json:
        for err in errors:
            print(f"[cli] файл {err.get('path')}: {err.get('error')}", file=sys.stderr)

    if args.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        print(payload["text"])

    if errors:
        sys.exit(1)


if __name__ == '__main__':
    main()
