"""
time_pattern_scorer.py
----------------------
Detecta pagos en horarios donde el usuario no suele operar.

Entrada: el histograma hora → transacciones del UserHistoryProfile.

Lógica:
  - Horas típicas = las horas más frecuentes que juntas cubren el 80%
    del historial. Un pago está "cerca" si cae a ±2 horas (circular)
    de alguna hora típica.
  - Ventana nocturna fija 22:00–06:00.
  - Con menos de 5 transacciones (calibración) solo se penaliza la
    noche, con el puntaje plano de noche sin historial.

Puntajes:
  noche y el usuario nunca operó de noche       → 85
  dentro de horas típicas                        → 0
  noche con historial nocturno pero atípica      → 60
  día fuera de horas típicas, confianza > 0.5    → 70
  día fuera de horas típicas, confianza ≤ 0.5    → 50
  (confianza = min(transacciones / 20, 1))
"""

from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Mapping

NIGHT_START = 22
NIGHT_END   = 6

TYPICAL_COVERAGE  = 0.8
HOUR_TOLERANCE    = 2
MIN_TX_FOR_PATTERN = 5
CONFIDENT_TX_COUNT = 20

SCORE_NIGHT_NO_HISTORY   = 85
SCORE_NIGHT_ATYPICAL     = 60
SCORE_DAY_ATYPICAL       = 70
SCORE_DAY_ATYPICAL_WEAK  = 50


@dataclass
class TimePatternResult:
    score:         int
    reason:        str
    hour:          int
    typical_hours: list[int]


def is_night(hour: int, start: int = NIGHT_START, end: int = NIGHT_END) -> bool:
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end


def hour_distance(a: int, b: int) -> int:
    diff = abs(a - b) % 24
    return min(diff, 24 - diff)


def typical_hours(hour_counts: Mapping[int, int], coverage: float = TYPICAL_COVERAGE) -> list[int]:
    total = sum(c for c in hour_counts.values() if c > 0)
    if total == 0:
        return []
    # Empates por hora ascendente para que el resultado sea determinista
    ranked = sorted(
        ((h, c) for h, c in hour_counts.items() if c > 0),
        key=lambda hc: (-hc[1], hc[0]),
    )
    selected, covered = [], 0
    for hour, count in ranked:
        selected.append(hour)
        covered += count
        if covered / total >= coverage:
            break
    return sorted(selected)


class TimePatternScorer:

    def __init__(
        self,
        tz: tzinfo,
        night_start: int = NIGHT_START,
        night_end: int = NIGHT_END,
    ):
        self.tz          = tz
        self.night_start = night_start
        self.night_end   = night_end

    def score(
        self,
        timestamp:         datetime,
        hour_counts:       Mapping[int, int],
        transaction_count: int,
    ) -> TimePatternResult:
        hour  = timestamp.astimezone(self.tz).hour
        night = is_night(hour, self.night_start, self.night_end)

        if transaction_count < MIN_TX_FOR_PATTERN:
            if night:
                return TimePatternResult(
                    SCORE_NIGHT_NO_HISTORY,
                    f"Pago nocturno ({hour:02d}:00) sin historial suficiente",
                    hour, [],
                )
            return TimePatternResult(0, "", hour, [])

        typical = typical_hours(hour_counts)
        near_typical = any(hour_distance(hour, h) <= HOUR_TOLERANCE for h in typical)
        night_history = any(
            is_night(h, self.night_start, self.night_end)
            for h, c in hour_counts.items() if c > 0
        )

        if night and not night_history:
            return TimePatternResult(
                SCORE_NIGHT_NO_HISTORY,
                f"Pago nocturno ({hour:02d}:00) y nunca has operado de noche",
                hour, typical,
            )
        if near_typical:
            return TimePatternResult(0, "", hour, typical)
        if night:
            return TimePatternResult(
                SCORE_NIGHT_ATYPICAL,
                f"Pago nocturno ({hour:02d}:00) fuera de tus horarios habituales",
                hour, typical,
            )

        confidence = min(transaction_count / CONFIDENT_TX_COUNT, 1.0)
        score = SCORE_DAY_ATYPICAL if confidence > 0.5 else SCORE_DAY_ATYPICAL_WEAK
        return TimePatternResult(
            score,
            f"Horario inusual ({hour:02d}:00), tus horas habituales son {typical}",
            hour, typical,
        )
