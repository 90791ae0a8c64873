# app/services/import_service.py

"""
기존 실험실 기록(CSV/Excel)을 'lims' 도메인으로 가져오는 서비스 모듈입니다.

1. 파일 파싱: CSV (구분자 자동 감지, UTF-8/BOM, cp1250 대체 디코딩) 및 XLSX (첫 번째 시트).
2. 열 매핑 제안: 헤더를 대상 필드와 폴란드어/영어 별칭에 퍼지 매칭합니다.
3. 가져오기 실행: 한 트랜잭션에서 고객사/공정을 찾거나 만들고, 행마다 시료와 COMPLETED 분석,
   편차가 계산된 결과를 생성합니다. 행 단위 오류는 행 번호와 함께 수집됩니다.
"""

import csv
import io
import logging
import re
import zipfile
from datetime import date, datetime, UTC
from difflib import SequenceMatcher
from typing import Any, Dict, List, NamedTuple, Optional

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from fastapi import HTTPException, status
from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings
from app.domains.lims import crud as lims_crud
from app.domains.lims import models as lims_models
from app.domains.lims import schemas as lims_schemas
from app.domains.lims import services as lims_services

logger = logging.getLogger(__name__)

MAPPING_MIN_CONFIDENCE = 0.3
CLIENT_NAME_MIN_SIMILARITY = 0.85
PREVIEW_ROWS = 10

# 대상 필드와 헤더 퍼지 매칭용 별칭
TARGET_FIELD_ALIASES: Dict[str, List[str]] = {
    "client.company_name": ["klient", "firma", "nazwa firmy", "company", "nazwa klienta", "kontrahent"],
    "client.nip": ["nip", "numer nip", "tax id"],
    "client.address": ["adres", "address", "ulica"],
    "client.city": ["miasto", "city", "miejscowość"],
    "client.postal_code": ["kod pocztowy", "postal code", "zip"],
    "client.contact_person": ["osoba kontaktowa", "kontakt", "contact person"],
    "client.email": ["email klienta", "client email", "e-mail"],
    "client.phone": ["telefon", "phone", "tel"],
    "process.name": ["proces", "process", "nazwa procesu", "linia", "kąpiel"],
    "process.process_type": ["typ procesu", "process type", "rodzaj"],
    "sample.sample_type": ["typ próbki", "sample type", "rodzaj próbki"],
    "sample.description": ["opis próbki", "sample description", "opis"],
    "sample.collected_at": ["data pobrania", "collection date", "data pobrania próbki"],
    "analysis.analysis_date": ["data analizy", "analysis date", "data badania", "data"],
    "analysis.notes": ["uwagi", "notatki", "notes", "komentarz"],
    "result.parameter_name": ["parametr", "parameter", "nazwa parametru", "wskaźnik", "oznaczenie"],
    "result.value": ["wynik", "wartość", "value", "result", "pomiar"],
    "result.unit": ["jednostka", "unit", "jedn"],
    "result.min_reference": ["min", "minimum", "dolna granica", "wartość min"],
    "result.max_reference": ["max", "maksimum", "górna granica", "wartość max"],
    "result.optimal_reference": ["optimum", "optymalnie", "wartość optymalna", "optimal"],
}

REQUIRED_FIELDS = ("client.company_name", "process.name", "result.parameter_name", "result.value")

PROCESS_TYPE_MAP: Dict[str, str] = {
    "cynkowanie": "ZINC", "cynk": "ZINC", "zinc": "ZINC",
    "niklowanie": "NICKEL", "nikiel": "NICKEL", "nickel": "NICKEL",
    "chromowanie": "CHROME", "chrom": "CHROME", "chrome": "CHROME",
    "miedziowanie": "COPPER", "miedź": "COPPER", "copper": "COPPER",
    "cynowanie": "TIN", "cyna": "TIN", "tin": "TIN",
    "złocenie": "GOLD", "złoto": "GOLD", "gold": "GOLD",
    "srebrzenie": "SILVER", "srebro": "SILVER", "silver": "SILVER",
    "anodowanie": "ANODIZING", "eloksalowanie": "ANODIZING", "anodizing": "ANODIZING",
    "pasywacja": "PASSIVATION", "passivation": "PASSIVATION",
    "inne": "OTHER", "other": "OTHER",
}

PROCESS_TYPE_CODE = re.compile(r"[A-Z][A-Z0-9_]{1,39}")

SAMPLE_TYPE_MAP: Dict[str, lims_models.SampleType] = {
    "kąpiel": lims_models.SampleType.BATH,
    "kapiel": lims_models.SampleType.BATH,
    "roztwór": lims_models.SampleType.BATH,
    "bath": lims_models.SampleType.BATH,
    "płukanie": lims_models.SampleType.RINSE,
    "plukanie": lims_models.SampleType.RINSE,
    "płuczka": lims_models.SampleType.RINSE,
    "rinse": lims_models.SampleType.RINSE,
    "ścieki": lims_models.SampleType.WASTEWATER,
    "scieki": lims_models.SampleType.WASTEWATER,
    "wastewater": lims_models.SampleType.WASTEWATER,
    "surowiec": lims_models.SampleType.RAW_MATERIAL,
    "raw_material": lims_models.SampleType.RAW_MATERIAL,
    "inne": lims_models.SampleType.OTHER,
    "other": lims_models.SampleType.OTHER,
}

# (정규식, 그룹 순서) - 순서대로 시도합니다.
DATE_PATTERNS = [
    (re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})"), ("year", "month", "day")),
    (re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})"), ("day", "month", "year")),
    (re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{2})$"), ("day", "month", "short_year")),
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})"), ("day", "month", "year")),
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$"), ("day", "month", "short_year")),
    (re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})"), ("day", "month", "year")),
    (re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{2})$"), ("day", "month", "short_year")),
]


class ParsedTable(NamedTuple):
    headers: List[str]
    rows: List[Dict[str, Any]]


# =============================================================================
# 1. 파일 파싱
# =============================================================================
def decode_text(content: bytes) -> str:
    """UTF-8 (BOM 포함 가능)로 디코딩하고, 실패하면 cp1250 으로 디코딩합니다."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("cp1250")


def detect_separator(text: str) -> str:
    """처음 5줄에서 가장 많이 등장하는 구분자(';', ',', 탭)를 반환합니다. 기본값은 ';'."""
    head = "\n".join(text.splitlines()[:5])
    best, best_count = ";", 0
    for separator in (";", ",", "\t"):
        count = head.count(separator)
        if count > best_count:
            best, best_count = separator, count
    return best


def parse_csv(content: bytes) -> ParsedTable:
    text = decode_text(content)
    reader = csv.reader(io.StringIO(text), delimiter=detect_separator(text))
    lines = [line for line in reader if line]
    if not lines:
        return ParsedTable([], [])
    headers = [h.strip() for h in lines[0]]
    rows = [
        {header: (line[i].strip() if i < len(line) else None) for i, header in enumerate(headers)}
        for line in lines[1:]
    ]
    return ParsedTable(headers, rows)


def parse_xlsx(content: bytes) -> ParsedTable:
    workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        values = sheet.iter_rows(values_only=True)
        first = next(values, None)
        if first is None:
            return ParsedTable([], [])
        headers = [str(h).strip() if h is not None else f"column_{i + 1}" for i, h in enumerate(first)]
        rows = []
        for line in values:
            if line is None or all(cell is None for cell in line):
                continue
            rows.append({header: (line[i] if i < len(line) else None) for i, header in enumerate(headers)})
        return ParsedTable(headers, rows)
    finally:
        workbook.close()


def parse_file(filename: str, content: bytes) -> ParsedTable:
    """확장자에 따라 CSV 또는 XLSX 파일을 파싱합니다. 지원하지 않는 형식이거나 행이 너무 많으면 400."""
    name = (filename or "").lower()
    try:
        if name.endswith((".xlsx", ".xlsm")):
            table = parse_xlsx(content)
        elif name.endswith((".csv", ".tsv", ".txt")):
            table = parse_csv(content)
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Unsupported file type (expected .csv, .tsv, .txt or .xlsx)",
            )
    except (csv.Error, UnicodeDecodeError, zipfile.BadZipFile, InvalidFileException, KeyError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Cannot read file: {e}")

    if not table.headers:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File contains no header row")
    if len(table.rows) > settings.IMPORT_MAX_ROWS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File has {len(table.rows)} rows, the limit is {settings.IMPORT_MAX_ROWS}",
        )
    return table


# =============================================================================
# 2. 열 매핑 제안 및 값 변환
# =============================================================================
def similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a.lower().strip(), b.lower().strip()).ratio()


def suggest_mappings(headers: List[str]) -> List[lims_schemas.MappingSuggestion]:
    """각 헤더에 가장 비슷한 대상 필드를 제안합니다. 유사도 30 % 미만인 헤더는 제외합니다."""
    suggestions = []
    for header in headers:
        best_field, best_score = None, 0.0
        for field, aliases in TARGET_FIELD_ALIASES.items():
            candidates = aliases + [field.split(".", 1)[1].replace("_", " ")]
            score = max(similarity(header, candidate) for candidate in candidates)
            if score > best_score:
                best_field, best_score = field, score
        if best_field and best_score >= MAPPING_MIN_CONFIDENCE:
            suggestions.append(lims_schemas.MappingSuggestion(
                source_column=header, target_field=best_field, confidence=round(best_score * 100)
            ))
    return suggestions


def parse_decimal(value: Any) -> Optional[float]:
    """
    '1 234,56', '1.234,56', '12,5', '12.5' 형식을 모두 float 로 변환합니다.
    변환할 수 없으면 None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return lims_services.as_number(value)
    text = re.sub(r"\s", "", str(value))
    if not text:
        return None
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    return lims_services.as_number(text)


def parse_date(value: Any) -> Optional[datetime]:
    """여러 날짜 형식을 UTC datetime 으로 변환합니다. 두 자리 연도는 70 이상이면 19xx, 아니면 20xx."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)

    text = str(value).strip()
    for pattern, groups in DATE_PATTERNS:
        match = pattern.match(text)
        if not match:
            continue
        parts = dict(zip(groups, (int(g) for g in match.groups())))
        year = parts.get("year")
        if "short_year" in parts:
            year = 1900 + parts["short_year"] if parts["short_year"] >= 70 else 2000 + parts["short_year"]
        try:
            return datetime(year, parts["month"], parts["day"], tzinfo=UTC)
        except ValueError:
            return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def map_process_type(value: Any, default: str = "OTHER") -> str:
    if value is None or not str(value).strip():
        return default
    text = str(value).strip()
    if text.lower() in PROCESS_TYPE_MAP:
        return PROCESS_TYPE_MAP[text.lower()]
    if text.upper() in PROCESS_TYPE_MAP.values():
        return text.upper()
    # 이미 코드 형태(대문자, 숫자, 밑줄)인 값은 그대로 사용합니다.
    if PROCESS_TYPE_CODE.fullmatch(text):
        return text
    return default


def map_sample_type(
    value: Any, default: lims_models.SampleType = lims_models.SampleType.BATH
) -> lims_models.SampleType:
    if value is None or not str(value).strip():
        return default
    text = str(value).strip()
    if text.lower() in SAMPLE_TYPE_MAP:
        return SAMPLE_TYPE_MAP[text.lower()]
    try:
        return lims_models.SampleType(text.upper())
    except ValueError:
        return lims_models.SampleType.OTHER


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def client_condition(column, client_id: Optional[int]):
    """전용 고객사 공정 또는 공용 공정(client_id 없음)을 찾는 조건입니다."""
    if client_id is None:
        return column.is_(None)
    return (column == client_id) | column.is_(None)


class RowError(Exception):
    """행 하나를 가져올 수 없을 때 발생합니다. 해당 행만 건너뜁니다."""


# =============================================================================
# 3. 가져오기 실행
# =============================================================================
class ImportService:
    """
    매핑 설정에 따라 파싱된 행들을 한 트랜잭션으로 가져옵니다.
    데이터베이스 오류가 발생하면 전체 가져오기를 롤백하고 예외를 전파합니다.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._clients: List[lims_models.Client] = []
        self._processes: Dict[tuple, lims_models.Process] = {}
        self._parameters: Dict[int, Dict[str, lims_models.ProcessParameter]] = {}

    def preview(self, table: ParsedTable) -> lims_schemas.ImportPreview:
        return lims_schemas.ImportPreview(
            headers=table.headers,
            rows=table.rows[:PREVIEW_ROWS],
            total_rows=len(table.rows),
            suggested_mappings=suggest_mappings(table.headers),
            target_fields=list(TARGET_FIELD_ALIASES),
        )

    async def execute(
        self, table: ParsedTable, config: lims_schemas.MappingConfig, *, user_id: int
    ) -> lims_schemas.ImportReport:
        field_map = {m.target_field: m for m in config.mappings}
        unknown = [f for f in field_map if f not in TARGET_FIELD_ALIASES]
        if unknown:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown target fields: {', '.join(unknown)}"
            )
        missing = [f for f in REQUIRED_FIELDS if f not in field_map]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail=f"Missing required mappings: {', '.join(missing)}"
            )

        imported, skipped = 0, 0
        errors: List[lims_schemas.ImportRowError] = []
        active_clients = await self.db.execute(
            select(lims_models.Client).where(lims_models.Client.is_active == True)  # noqa: E712
        )
        self._clients = list(active_clients.scalars().all())

        try:
            for index, row in enumerate(table.rows):
                row_number = index + 2  # 헤더가 1행
                if all(is_empty(v) for v in row.values()):
                    skipped += 1
                    continue
                values = {
                    field: self._cell(row, mapping) for field, mapping in field_map.items()
                }
                try:
                    await self._import_row(values, config, user_id=user_id)
                except RowError as e:
                    errors.append(lims_schemas.ImportRowError(row=row_number, message=str(e)))
                    continue
                imported += 1
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("가져오기 실패, 전체 롤백")
            raise

        logger.info(
            "가져오기 완료: 전체 %d, 성공 %d, 건너뜀 %d, 오류 %d",
            len(table.rows), imported, skipped, len(errors),
        )
        return lims_schemas.ImportReport(total=len(table.rows), imported=imported, skipped=skipped, errors=errors)

    @staticmethod
    def _cell(row: Dict[str, Any], mapping: lims_schemas.ColumnMapping) -> Any:
        raw = row.get(mapping.source_column)
        if is_empty(raw):
            return mapping.default_value
        return raw.strip() if isinstance(raw, str) else raw

    async def _import_row(
        self, values: Dict[str, Any], config: lims_schemas.MappingConfig, *, user_id: int
    ) -> None:
        company_name = values.get("client.company_name")
        if is_empty(company_name):
            raise RowError("Missing client name")
        process_name = values.get("process.name")
        if is_empty(process_name):
            raise RowError("Missing process name")
        parameter_name = values.get("result.parameter_name")
        if is_empty(parameter_name):
            raise RowError("Missing parameter name")
        value = parse_decimal(values.get("result.value"))
        if value is None:
            raise RowError(f"Invalid numeric value: {values.get('result.value')!r}")

        band = {}
        for field in ("min_reference", "max_reference", "optimal_reference"):
            raw = values.get(f"result.{field}")
            band[field] = parse_decimal(raw)
            if band[field] is None and not is_empty(raw):
                raise RowError(f"Invalid numeric value for {field}: {raw!r}")
        if band["min_reference"] is not None and band["max_reference"] is not None \
                and band["min_reference"] > band["max_reference"]:
            raise RowError("min_reference is greater than max_reference")

        now = datetime.now(UTC)
        collected_at = now
        if not is_empty(values.get("sample.collected_at")):
            collected_at = parse_date(values["sample.collected_at"])
            if collected_at is None:
                raise RowError(f"Invalid date: {values['sample.collected_at']!r}")
        analysis_date = collected_at
        if not is_empty(values.get("analysis.analysis_date")):
            analysis_date = parse_date(values["analysis.analysis_date"])
            if analysis_date is None:
                raise RowError(f"Invalid date: {values['analysis.analysis_date']!r}")

        db_client = await self._find_or_create_client(str(company_name), values)
        db_process = await self._find_or_create_process(
            str(process_name),
            map_process_type(values.get("process.process_type"), config.default_process_type),
            db_client.id,
        )

        db_sample = lims_models.Sample(
            sample_code=await lims_crud.next_code(self.db, lims_models.Sample.sample_code, "PRB", now),
            client_id=db_client.id,
            process_id=db_process.id,
            collected_by=user_id,
            collected_at=collected_at,
            sample_type=map_sample_type(values.get("sample.sample_type"), config.default_sample_type),
            description=values.get("sample.description"),
            status=lims_models.SampleStatus.COMPLETED,
        )
        self.db.add(db_sample)
        await self.db.flush()

        db_analysis = lims_models.Analysis(
            analysis_code=await lims_crud.next_code(self.db, lims_models.Analysis.analysis_code, "ANL", now),
            sample_id=db_sample.id,
            performed_by=user_id,
            analysis_date=analysis_date,
            status=lims_models.AnalysisStatus.COMPLETED,
            notes=values.get("analysis.notes"),
        )
        self.db.add(db_analysis)
        await self.db.flush()

        db_result = lims_models.AnalysisResult(
            analysis_id=db_analysis.id,
            parameter_name=str(parameter_name).strip(),
            unit=str(values.get("result.unit") or ""),
            value=value,
            **band,
        )
        if all(v is None for v in band.values()):
            param = (await self._active_parameters(db_process.id)).get(db_result.parameter_name.lower())
            if param is not None:
                db_result.min_reference = param.min_value
                db_result.max_reference = param.max_value
                db_result.optimal_reference = param.optimal_value
                db_result.unit = db_result.unit or param.unit
        lims_services.apply_deviation(db_result)
        self.db.add(db_result)
        await self.db.flush()

    async def _find_or_create_client(self, company_name: str, values: Dict[str, Any]) -> lims_models.Client:
        """NIP 일치, 회사명 유사도(0.85 이상) 순으로 기존 고객사를 찾고 없으면 생성합니다."""
        nip = re.sub(r"\D", "", str(values.get("client.nip") or "")) or None
        if nip and len(nip) != 10:
            nip = None
        if nip:
            existing = await lims_crud.client.get_by_nip(self.db, nip=nip)
            if existing:
                return existing

        best, best_score = None, 0.0
        for candidate in self._clients:
            score = similarity(company_name, candidate.company_name)
            if score > best_score:
                best, best_score = candidate, score
        if best is not None and best_score >= CLIENT_NAME_MIN_SIMILARITY:
            return best

        db_client = lims_models.Client(
            company_name=company_name.strip(),
            nip=nip,
            address=values.get("client.address"),
            city=values.get("client.city"),
            postal_code=values.get("client.postal_code"),
            contact_person=values.get("client.contact_person"),
            email=values.get("client.email"),
            phone=str(values["client.phone"]) if values.get("client.phone") is not None else None,
        )
        self.db.add(db_client)
        await self.db.flush()
        self._clients.append(db_client)
        logger.info("가져오기: 고객사 생성 %s", db_client.company_name)
        return db_client

    async def _find_or_create_process(
        self, name: str, process_type: str, client_id: Optional[int]
    ) -> lims_models.Process:
        key = (name.strip().lower(), process_type, client_id)
        if key in self._processes:
            return self._processes[key]

        Process = lims_models.Process
        statement = select(Process).where(
            func.lower(Process.name) == key[0],
            Process.process_type == process_type,
            client_condition(Process.client_id, client_id),
        ).order_by(Process.client_id.is_(None), Process.id)
        db_process = (await self.db.execute(statement)).scalars().first()
        if db_process is None:
            db_process = Process(name=name.strip(), process_type=process_type, client_id=client_id)
            self.db.add(db_process)
            await self.db.flush()
            logger.info("가져오기: 공정 생성 %s (%s)", db_process.name, process_type)
        self._processes[key] = db_process
        return db_process

    async def _active_parameters(self, process_id: int) -> Dict[str, lims_models.ProcessParameter]:
        if process_id not in self._parameters:
            self._parameters[process_id] = await lims_crud.process.get_active_parameters(
                self.db, process_id=process_id
            )
        return self._parameters[process_id]
