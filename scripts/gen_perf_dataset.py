#!/usr/bin/env python3
"""Dataset generation script for import performance testing.

Generates synthetic cliente / empresa / personal workbooks in the layout the
bulk importer expects:
- Row 1: Header row (template column names, ``(*)`` marks mandatory columns)
- Row 2+: Data rows

A configurable share of rows is made defective (missing mandatory values,
unformatted CUIT/DNI, lower-case booleans) so validation and recovery have
something to do.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

ENTITIES = ("cliente", "empresa", "personal")

CLIENTE_COLUMNS = ["Nombre (*)", "CUIT (*)", "Dirección", "Teléfono", "Email", "Activo"]
EMPRESA_COLUMNS = ["Nombre (*)", "Tipo (*)", "CUIT", "Dirección", "Teléfono", "Email", "Activa"]
PERSONAL_COLUMNS = [
    "Nombre (*)",
    "Apellido (*)",
    "DNI (*)",
    "CUIL",
    "Tipo (*)",
    "Empresa (*)",
    "Email",
    "Licencia - Número",
    "Licencia - Vencimiento",
    "Activo",
]

FIRST_NAMES = ["Juan", "María", "Carlos", "Ana", "Luis", "Laura", "Pedro", "Sofía", "Diego", "Lucía"]
LAST_NAMES = ["García", "Rodríguez", "López", "Martínez", "Pérez", "Gómez", "Díaz", "Fernández"]
PERSONAL_TYPES = ["Conductor", "Administrativo", "Mecánico", "Supervisor", "Otro"]
CUIT_PREFIXES = ["20", "23", "27", "30", "33"]


def _cuit(rng: np.random.Generator, dashed: bool = True) -> str:
    prefix = rng.choice(CUIT_PREFIXES)
    body = f"{rng.integers(10_000_000, 99_999_999)}"
    check = f"{rng.integers(0, 10)}"
    return f"{prefix}-{body}-{check}" if dashed else f"{prefix}{body}{check}"


def _future_date(rng: np.random.Generator) -> str:
    days = int(rng.integers(30, 1500))
    return (pd.Timestamp.today().normalize() + pd.Timedelta(days=days)).strftime("%d/%m/%Y")


def generate_rows(entity: str, rows: int, defect_rate: float = 0.1, seed: int = 42) -> pd.DataFrame:
    """Generate ``rows`` synthetic records for ``entity``.

    Args:
        entity: cliente, empresa or personal
        rows: Number of data rows
        defect_rate: Share of rows (0..1) carrying a recoverable or fatal defect
        seed: Random seed for reproducible data

    Returns:
        DataFrame whose columns are the entity's template headers
    """
    rng = np.random.default_rng(seed)
    defective = rng.random(rows) < defect_rate
    records: list[dict[str, Any]] = []

    for i in range(rows):
        broken = bool(defective[i])
        if entity == "cliente":
            record = {
                "Nombre (*)": f"Cliente {i + 1:06d}",
                "CUIT (*)": _cuit(rng, dashed=not broken),
                "Dirección": f"Calle {rng.integers(1, 5000)}",
                "Teléfono": f"11{rng.integers(10_000_000, 99_999_999)}",
                "Email": f"cliente{i + 1}@example.com",
                "Activo": "si" if broken else "Sí",
            }
        elif entity == "empresa":
            record = {
                "Nombre (*)": f"Empresa {i + 1:06d}",
                "Tipo (*)": "" if broken else rng.choice(["Propia", "Subcontratada"]),
                "CUIT": _cuit(rng),
                "Dirección": f"Ruta {rng.integers(1, 40)} km {rng.integers(1, 900)}",
                "Teléfono": f"11{rng.integers(10_000_000, 99_999_999)}",
                "Email": f"empresa{i + 1}@example.com",
                "Activa": "Sí",
            }
        elif entity == "personal":
            tipo = str(rng.choice(PERSONAL_TYPES))
            record = {
                "Nombre (*)": str(rng.choice(FIRST_NAMES)),
                "Apellido (*)": str(rng.choice(LAST_NAMES)),
                "DNI (*)": f"{20_000_000 + i}",
                "CUIL": "",
                "Tipo (*)": tipo,
                "Empresa (*)": f"Empresa {int(rng.integers(1, 50)):06d}",
                "Email": f"persona{i + 1}@EXAMPLE.com" if broken else f"persona{i + 1}@example.com",
                "Licencia - Número": "" if broken or tipo != "Conductor" else f"L{rng.integers(100_000, 999_999)}",
                "Licencia - Vencimiento": _future_date(rng) if tipo == "Conductor" else "",
                "Activo": "NO" if broken else "No",
            }
        else:
            raise ValueError(f"unknown entity: {entity}")
        records.append(record)

    columns = {"cliente": CLIENTE_COLUMNS, "empresa": EMPRESA_COLUMNS, "personal": PERSONAL_COLUMNS}[entity]
    return pd.DataFrame(records, columns=columns)


def create_workbook(
    output_path: Path,
    entities: list[str],
    rows: int,
    defect_rate: float = 0.1,
    seed: int = 42,
) -> None:
    """Write one sheet per entity, named after the backend collection."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    sheet_names = {"cliente": "clientes", "empresa": "empresas", "personal": "personal"}

    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        for offset, entity in enumerate(entities):
            df = generate_rows(entity, rows, defect_rate, seed + offset)
            df.to_excel(writer, sheet_name=sheet_names[entity], index=False)

    print(f"Created workbook: {output_path}")
    print(f"  Sheets: {len(entities)} ({', '.join(sheet_names[e] for e in entities)})")
    print(f"  Rows per sheet: {rows} (+ 1 header row)")
    print(f"  Defect rate: {defect_rate:.0%}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate synthetic fleet import workbooks for performance testing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 5k clientes, 10% defective
  %(prog)s clientes.xlsx --entities cliente --rows 5000

  # All three entities, clean data
  %(prog)s all.xlsx --rows 1000 --defect-rate 0
        """,
    )
    parser.add_argument("output", type=Path, help="Output .xlsx path")
    parser.add_argument("--entities", nargs="+", choices=ENTITIES, default=["cliente"], help="Sheets to generate")
    parser.add_argument("--rows", type=int, default=5_000, help="Data rows per sheet (default: 5,000)")
    parser.add_argument("--defect-rate", type=float, default=0.1, help="Share of defective rows (default: 0.1)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--dry-run", action="store_true", help="Show the plan without writing the file")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if not 0.0 <= args.defect_rate <= 1.0:
        print("Error: --defect-rate must be between 0 and 1", file=sys.stderr)
        return 1

    print("Dataset generation plan:")
    print(f"  Output file: {args.output}")
    print(f"  Entities: {', '.join(args.entities)}")
    print(f"  Rows per sheet: {args.rows:,}")
    print(f"  Random seed: {args.seed}")

    if args.dry_run:
        print("\n[DRY RUN] Would generate the workbook but not creating it.")
        return 0

    try:
        create_workbook(args.output, args.entities, args.rows, args.defect_rate, args.seed)
    except OSError as e:
        print(f"\nError writing workbook: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
