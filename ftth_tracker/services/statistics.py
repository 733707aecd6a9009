"""
Dashboard statistics over technician/vehicle records.

People and cities are counted by their lowercase-trimmed name and vehicles
by their uppercase-trimmed plate, so "João " and "joão" are one technician.
"""
from typing import Any, Dict, Iterable, Optional


def _norm_lower(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip().lower()
    return value or None


def _norm_plate(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip().upper()
    return value or None


def _get(record: Any, name: str) -> Optional[str]:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _bucket() -> Dict[str, set]:
    return {"tecnicos": set(), "auxiliares": set(), "veiculos": set(), "cidades": set()}


def _add(bucket: Dict[str, set], record: Any) -> None:
    for key, field, norm in (
        ("tecnicos", "tecnico", _norm_lower),
        ("auxiliares", "auxiliar", _norm_lower),
        ("veiculos", "placa", _norm_plate),
        ("cidades", "cidade", _norm_lower),
    ):
        value = norm(_get(record, field))
        if value:
            bucket[key].add(value)


def _summary(bucket: Dict[str, set]) -> Dict[str, int]:
    return {
        "total_tecnicos": len(bucket["tecnicos"]),
        "total_auxiliares": len(bucket["auxiliares"]),
        "total_pessoal": len(bucket["tecnicos"]) + len(bucket["auxiliares"]),
        "total_veiculos": len(bucket["veiculos"]),
        "total_cidades": len(bucket["cidades"]),
    }


def calcular_estatisticas(records: Iterable[Any], operacao: Optional[str] = None) -> Dict[str, Any]:
    """
    Aggregate distinct technicians, auxiliaries, vehicles and cities.

    When ``operacao`` is given only records tagged with that operation are
    counted; callers pass the viewer's operation when it lacks the
    cross-operation permission.
    """
    overall = _bucket()
    per_operation: Dict[str, Dict[str, set]] = {}
    total_registros = 0
    for record in records:
        if operacao and _get(record, "operacao") != operacao:
            continue
        total_registros += 1
        _add(overall, record)
        tag = _get(record, "operacao") or "Sem operação"
        _add(per_operation.setdefault(tag, _bucket()), record)

    stats: Dict[str, Any] = {"total_registros": total_registros, "operacao": operacao}
    stats.update(_summary(overall))
    stats["por_operacao"] = {tag: _summary(bucket) for tag, bucket in sorted(per_operation.items())}
    return stats
