#!/usr/bin/env python3
"""Validate local rent auction environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rent_auction.domain.models import AllocationStrategy
from rent_auction.repository.auction_repository import AuctionRepository
from rent_auction.services.auction_service import AuctionService
from rent_auction.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="rent-auction-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("ortools", "ortools"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    from importlib.metadata import version

    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            _ = version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "rent_auction_validation.db",
        )
        repository = AuctionRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: One-shot settlement sums to the rent
        try:
            service = AuctionService(repository=repository, settings=validation_settings)
            auction = service.create_auction(
                total_rent=3000,
                room_names=["Attic", "Garden", "Corner"],
                user_names=["Ana", "Ben", "Cho"],
            )
            for user_id, amounts in {
                "u1": {"r1": 1200, "r2": 900, "r3": 900},
                "u2": {"r1": 1000, "r2": 1100, "r3": 900},
                "u3": {"r1": 1000, "r2": 1000, "r3": 1000},
            }.items():
                service.submit_valuations(auction.auction_id, user_id=user_id, valuations=amounts)
            settlement = service.compute_settlement(
                auction.auction_id,
                AllocationStrategy.OPTIMAL_BATCH,
            )
            if round(settlement.total_price, 2) != 3000:
                raise RuntimeError(f"prices sum to {settlement.total_price:.2f}")
            ok, line = _print_result(
                "Optimal settlement",
                True,
                f": {len(settlement.assignments)} rooms priced",
            )
        except Exception as exc:
            ok, line = _print_result("Optimal settlement", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Rent Auction Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
