# app/domains/lims/services.py

"""
'lims' 도메인의 순수 계산 로직 모듈입니다 (데이터베이스 접근 없음).

- classify_deviation: 측정값을 기준 범위 스냅샷과 비교해 편차 등급과 편차율(%)을 계산합니다.
- summarize_values: 추세 데이터의 기초 통계(count/min/max/avg/median)를 계산합니다.
- suggest_recommendation: 범위를 벗어난 결과로부터 조치 권고 초안을 만듭니다.
- build_archive_csv: 분석 이력을 결과 한 건당 한 행의 CSV 로 직렬화합니다.
"""

import csv
import io
import math
import statistics
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

from . import models as lims_models

# 편차율이 기준 범위 폭의 20 %를 넘으면 CRITICAL_* 로 분류합니다.
CRITICAL_THRESHOLD_PERCENT = 20


class DeviationResult(NamedTuple):
    deviation: lims_models.Deviation
    deviation_percent: float


def as_number(value: Any) -> Optional[float]:
    """
    숫자로 해석할 수 있는 값을 float 로 변환합니다.
    None, NaN, 무한대, 숫자가 아닌 문자열은 '정의되지 않음'(None)으로 취급합니다.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(Decimal(value.strip()))
        except (InvalidOperation, ValueError):
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def classify_deviation(
    value: Any,
    min_value: Any = None,
    max_value: Any = None,
    optimal_value: Any = None,
) -> DeviationResult:
    """
    측정값의 편차 등급과 편차율을 계산합니다.

    1. 최소값 미만: 범위 폭 대비 부족분 비율(음수). 20 % 초과 시 CRITICAL_LOW, 아니면 BELOW_MIN.
    2. 최대값 초과: 범위 폭 대비 초과분 비율(양수). 20 % 초과 시 CRITICAL_HIGH, 아니면 ABOVE_MAX.
    3. 범위 안이고 최적값이 있으면: 최적값 대비 상대 편차율, WITHIN_RANGE.
    4. 그 외: WITHIN_RANGE, 0.

    경계값(value == min 또는 value == max)은 범위 안입니다.
    범위 폭이 0 이하이면(한쪽 경계만 정의된 경우 포함) 편차율은 0 입니다.
    """
    number = as_number(value)
    low = as_number(min_value)
    high = as_number(max_value)
    optimal = as_number(optimal_value)

    if number is None:
        return DeviationResult(lims_models.Deviation.WITHIN_RANGE, 0.0)

    if low is not None and number < low:
        span = (high if high is not None else low) - low
        percent = (low - number) * 100 / span if span > 0 else 0.0
        deviation = (
            lims_models.Deviation.CRITICAL_LOW
            if percent > CRITICAL_THRESHOLD_PERCENT
            else lims_models.Deviation.BELOW_MIN
        )
        return DeviationResult(deviation, -percent if percent else 0.0)

    if high is not None and number > high:
        span = high - (low if low is not None else high)
        percent = (number - high) * 100 / span if span > 0 else 0.0
        deviation = (
            lims_models.Deviation.CRITICAL_HIGH
            if percent > CRITICAL_THRESHOLD_PERCENT
            else lims_models.Deviation.ABOVE_MAX
        )
        return DeviationResult(deviation, percent)

    if optimal:
        return DeviationResult(lims_models.Deviation.WITHIN_RANGE, (number - optimal) / optimal * 100)

    return DeviationResult(lims_models.Deviation.WITHIN_RANGE, 0.0)


def apply_deviation(result: lims_models.AnalysisResult) -> lims_models.AnalysisResult:
    """결과 객체의 값과 자체 스냅샷으로 편차 필드를 다시 계산해 채웁니다."""
    deviation, percent = classify_deviation(
        result.value, result.min_reference, result.max_reference, result.optimal_reference
    )
    result.deviation = deviation
    result.deviation_percent = round(percent, 4)
    return result


def summarize_values(values: Iterable[float]) -> Optional[Dict[str, float]]:
    """값 목록의 기초 통계를 반환합니다. 값이 없으면 None."""
    data = [float(v) for v in values]
    if not data:
        return None
    return {
        "count": len(data),
        "min": min(data),
        "max": max(data),
        "avg": round(statistics.fmean(data), 4),
        "median": statistics.median(data),
    }


def suggest_recommendation(result: lims_models.AnalysisResult) -> Optional[Dict[str, Any]]:
    """
    범위를 벗어난 결과에 대한 조치 권고 초안을 만듭니다.
    범위 안의 결과는 None 을 반환합니다.
    목표값은 최적값이 있으면 최적값, 없으면 벗어난 쪽 경계값입니다.
    """
    deviation = result.deviation
    if not deviation.is_out_of_range:
        return None

    too_low = deviation.severity < 0
    if too_low:
        recommendation_type = lims_models.RecommendationType.INCREASE
        bound = result.min_reference
        verb = "Increase"
    else:
        recommendation_type = lims_models.RecommendationType.DECREASE
        bound = result.max_reference
        verb = "Decrease"
    target = result.optimal_reference if result.optimal_reference is not None else bound

    if deviation.is_critical:
        priority = lims_models.Priority.CRITICAL
        recommendation_type = lims_models.RecommendationType.URGENT_ACTION
    else:
        priority = lims_models.Priority.MEDIUM

    unit = f" {result.unit}" if result.unit else ""
    description = f"{verb} {result.parameter_name} from {result.value:g}{unit}"
    if target is not None:
        description += f" to {target:g}{unit}"
    description += f" ({result.deviation_percent:+.1f}% outside the reference range)."

    return {
        "parameter_name": result.parameter_name,
        "description": description,
        "recommendation_type": recommendation_type,
        "priority": priority,
        "current_value": result.value,
        "target_value": target,
    }


# =============================================================================
# CSV 내보내기
# =============================================================================
ARCHIVE_CSV_HEADERS = [
    "Kod analizy", "Data analizy", "Status", "Kod probki", "Typ probki",
    "Klient", "Proces", "Typ procesu", "Wykonal", "Zatwierdzil",
    "Parametr", "Wartosc", "Jednostka", "Min", "Max", "Optymalnie",
    "Odchylenie", "Odchylenie %", "Uwagi",
]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:g}"
    return str(getattr(value, "value", value))


def build_archive_csv(analyses: Iterable[lims_models.Analysis]) -> str:
    """
    세미콜론 구분, UTF-8 BOM 으로 시작하는 CSV 문자열을 만듭니다 (엑셀의 폴란드어 문자 처리).
    결과가 없는 분석도 파라미터 칸을 비운 한 행으로 포함합니다.
    분석 객체에는 sample.client, sample.process, performer, approver, results 가 로드되어 있어야 합니다.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";", lineterminator="\n")
    writer.writerow(ARCHIVE_CSV_HEADERS)

    for analysis in analyses:
        head: List[Any] = [
            analysis.analysis_code,
            analysis.analysis_date.date().isoformat(),
            analysis.status,
            analysis.sample.sample_code,
            analysis.sample.sample_type,
            analysis.sample.client.company_name,
            analysis.sample.process.name,
            analysis.sample.process.process_type,
            analysis.performer.full_name if analysis.performer else "",
            analysis.approver.full_name if analysis.approver else "",
        ]
        if not analysis.results:
            writer.writerow([_cell(v) for v in head] + [""] * 8 + [_cell(analysis.notes)])
        for result in analysis.results:
            tail = [
                result.parameter_name, result.value, result.unit,
                result.min_reference, result.max_reference, result.optimal_reference,
                result.deviation, result.deviation_percent, analysis.notes,
            ]
            writer.writerow([_cell(v) for v in head + tail])

    return "\ufeff" + buffer.getvalue()
