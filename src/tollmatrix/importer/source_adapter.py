"""
Source adapters for toll price feeds.

Every feed, whatever its native shape, is translated into a stream of
PlazaPriceRecord: a plaza label (or an entry/exit label pair for route-based
prices) plus one price and its dimensions. The import run only ever sees
that canonical stream.

CsvSourceAdapter reads the canonical columns from CSV or Excel files:

    entry, exit, number, amount, payment_type, axle_class,
    day_of_week_from, day_of_week_to, time_of_day, time_from, time_to,
    description, website_url

plus optional yes/no columns accepts_tag, accepts_no_plate, accepts_cash,
accepts_no_card and accepts_app describing the plaza's payment options.
"""

import logging
import math
import re
from abc import ABC, abstractmethod
from datetime import time
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Type, Union

import pandas as pd
from pydantic import BaseModel, ValidationError, field_validator

from ..store.models import (
    AxleClass,
    DayOfWeek,
    PaymentMethod,
    PaymentType,
    PriceFactRequest,
    TimeOfDay,
    TollPoint,
)

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {'.csv', '.xlsx', '.xls'}

# Aliases seen in state feeds
_ENUM_ALIASES = {
    PaymentType: {
        "ezpass": PaymentType.EZPASS,
        "tag": PaymentType.EZPASS,
        "etc": PaymentType.EZPASS,
        "ipass": PaymentType.IPASS,
        "payonline": PaymentType.PAY_ONLINE,
        "online": PaymentType.PAY_ONLINE,
        "plate": PaymentType.PAY_ONLINE,
        "tollbymail": PaymentType.PAY_ONLINE,
        "cash": PaymentType.CASH,
    },
    DayOfWeek: {
        "mon": DayOfWeek.MONDAY,
        "tue": DayOfWeek.TUESDAY,
        "wed": DayOfWeek.WEDNESDAY,
        "thu": DayOfWeek.THURSDAY,
        "fri": DayOfWeek.FRIDAY,
        "sat": DayOfWeek.SATURDAY,
        "sun": DayOfWeek.SUNDAY,
    },
}


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def parse_enum(enum_cls: Type[IntEnum], value: Any, default: IntEnum) -> IntEnum:
    """Parse an enum from its number, name or a known alias.

    Matching ignores case, spaces, dashes and underscores, so "EZ-Pass",
    "ez_pass" and "EZPASS" are equivalent. Axle classes also accept
    "5", "5L" and "AXLE_5".

    Raises:
        ValueError: If the value cannot be mapped
    """
    if _is_missing(value):
        return default
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return enum_cls(int(value))

    text = re.sub(r"[\s\-_]", "", str(value)).lower()
    if text.isdigit():
        return enum_cls(int(text))

    if enum_cls is AxleClass:
        match = re.fullmatch(r"(?:axle)?(\d)l?", text)
        if match:
            return AxleClass(int(match.group(1)))

    for member in enum_cls:
        if member.name.replace("_", "").lower() == text:
            return member

    alias = _ENUM_ALIASES.get(enum_cls, {}).get(text)
    if alias is not None:
        return alias

    raise ValueError(f"Unknown {enum_cls.__name__} value: {value!r}")


def parse_flag(value: Any) -> bool:
    """Parse a yes/no cell such as "Y", "true", "1" or "x"."""
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "x"}
    return bool(value)


def parse_clock_time(value: Any) -> Optional[time]:
    """Parse "HH:MM" or "HH:MM:SS" into a time; blank values give None."""
    if _is_missing(value):
        return None
    if isinstance(value, time):
        return value
    text = str(value).strip()
    if re.fullmatch(r"\d{1,2}:\d{2}", text):
        text = f"{text}:00"
    if re.fullmatch(r"\d:\d{2}:\d{2}", text):
        text = f"0{text}"
    return time.fromisoformat(text)


class PlazaPriceRecord(BaseModel):
    """One canonical price row from a feed."""

    entry_label: str
    exit_label: Optional[str] = None
    number: Optional[str] = None
    amount: float
    payment_type: PaymentType = PaymentType.CASH
    axle_class: AxleClass = AxleClass.AXLE_5
    day_of_week_from: DayOfWeek = DayOfWeek.ANY
    day_of_week_to: DayOfWeek = DayOfWeek.ANY
    time_of_day: TimeOfDay = TimeOfDay.ANY
    time_from: Optional[time] = None
    time_to: Optional[time] = None
    description: Optional[str] = None
    website_url: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None

    @field_validator("entry_label")
    @classmethod
    def _entry_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("entry label cannot be empty")
        return value.strip()

    @field_validator("exit_label", "number", "description", "website_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if _is_missing(value):
            return None
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value).strip()

    @field_validator("payment_type", mode="before")
    @classmethod
    def _parse_payment_type(cls, value: Any) -> PaymentType:
        return parse_enum(PaymentType, value, PaymentType.CASH)

    @field_validator("axle_class", mode="before")
    @classmethod
    def _parse_axle_class(cls, value: Any) -> AxleClass:
        return parse_enum(AxleClass, value, AxleClass.AXLE_5)

    @field_validator("day_of_week_from", "day_of_week_to", mode="before")
    @classmethod
    def _parse_day(cls, value: Any) -> DayOfWeek:
        return parse_enum(DayOfWeek, value, DayOfWeek.ANY)

    @field_validator("time_of_day", mode="before")
    @classmethod
    def _parse_time_of_day(cls, value: Any) -> TimeOfDay:
        return parse_enum(TimeOfDay, value, TimeOfDay.ANY)

    @field_validator("time_from", "time_to", mode="before")
    @classmethod
    def _parse_time(cls, value: Any) -> Optional[time]:
        return parse_clock_time(value)

    @property
    def is_route(self) -> bool:
        """True when the price applies to an entry/exit pair."""
        return self.exit_label is not None

    def to_request(self) -> PriceFactRequest:
        return PriceFactRequest(
            amount=self.amount,
            payment_type=self.payment_type,
            axle_class=self.axle_class,
            day_of_week_from=self.day_of_week_from,
            day_of_week_to=self.day_of_week_to,
            time_of_day=self.time_of_day,
            time_from=self.time_from,
            time_to=self.time_to,
            description=self.description,
        )


class SourceAdapter(ABC):
    """A feed translated into canonical price records."""

    def __init__(self):
        self.errors: List[str] = []

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Short identifier recorded with each import run."""

    @abstractmethod
    def records(self) -> Iterator[PlazaPriceRecord]:
        """Yield canonical records.

        Rows that cannot be translated are appended to ``errors`` rather
        than raised.
        """


def read_table(path: Union[str, Path]) -> pd.DataFrame:
    """Load a CSV or Excel file into a DataFrame.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file format is not supported
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")

    ext = path.suffix.lower()
    if ext == '.csv':
        return pd.read_csv(path)
    elif ext in {'.xlsx', '.xls'}:
        return pd.read_excel(path)
    else:
        raise ValueError(f"Unsupported file format: {ext}")


def normalize_columns(df: pd.DataFrame, column_mapping: Dict[str, List[str]]) -> pd.DataFrame:
    """Rename known column variants to their standard names.

    Variants are compared case-insensitively with spaces and dashes treated
    as underscores.

    Args:
        df: Input DataFrame
        column_mapping: {standard_name: [possible_variants]}

    Returns:
        DataFrame with normalized column names
    """
    def _canon(name: Any) -> str:
        return re.sub(r"[\s\-]+", "_", str(name).strip()).lower()

    present = {_canon(col): col for col in df.columns}

    rename_map = {}
    for standard_name, variants in column_mapping.items():
        for variant in [standard_name] + variants:
            original = present.get(_canon(variant))
            if original is not None:
                if original != standard_name:
                    rename_map[original] = standard_name
                break  # Use first match only

    if rename_map:
        df = df.rename(columns=rename_map)
        logger.debug(f"Normalized columns: {rename_map}")

    return df


class CsvSourceAdapter(SourceAdapter):
    """Reads canonical price rows from a CSV or Excel file."""

    COLUMN_MAPPING = {
        'entry': ['entry_label', 'plaza', 'plaza_name', 'toll', 'name', 'from', 'entry_plaza'],
        'exit': ['exit_label', 'to', 'exit_plaza'],
        'number': ['plaza_number', 'plaza_id', 'toll_number'],
        'amount': ['price', 'rate', 'toll_rate', 'cost'],
        'payment_type': ['payment', 'payment_method', 'method'],
        'axle_class': ['axles', 'axle', 'vehicle_class', 'class'],
        'day_of_week_from': ['day_from', 'days_from'],
        'day_of_week_to': ['day_to', 'days_to'],
        'time_of_day': ['period'],
        'time_from': ['start_time', 'from_time'],
        'time_to': ['end_time', 'to_time'],
        'description': ['notes', 'comment'],
        'website_url': ['website', 'url'],
    }

    # Optional yes/no columns describing what the plaza accepts
    PAYMENT_METHOD_COLUMNS = {
        'accepts_tag': ['tag_accepted', 'ezpass_accepted'],
        'accepts_no_plate': ['no_plate'],
        'accepts_cash': ['cash_accepted'],
        'accepts_no_card': ['no_card'],
        'accepts_app': ['app_accepted'],
    }

    _FIELD_FOR_COLUMN = {'entry': 'entry_label', 'exit': 'exit_label'}

    def __init__(self, path: Union[str, Path], name: Optional[str] = None):
        """Initialize adapter.

        Args:
            path: CSV or Excel file
            name: Source name; defaults to the file stem
        """
        super().__init__()
        self.path = Path(path)
        self._name = name or self.path.stem

    @property
    def source_name(self) -> str:
        return self._name

    def load(self) -> pd.DataFrame:
        """Read and normalize the source file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If required columns are missing
        """
        df = normalize_columns(
            read_table(self.path),
            {**self.COLUMN_MAPPING, **self.PAYMENT_METHOD_COLUMNS}
        )

        missing = [col for col in ('entry', 'amount') if col not in df.columns]
        if missing:
            raise ValueError(f"Source {self.path.name} missing required columns: {missing}")

        logger.info(f"Loaded {len(df)} rows from {self.path.name}")
        return df

    def records(self) -> Iterator[PlazaPriceRecord]:
        self.errors = []
        df = self.load()

        for idx, row in df.iterrows():
            data = {}
            for column in self.COLUMN_MAPPING:
                if column in df.columns:
                    value = row[column]
                    data[self._FIELD_FOR_COLUMN.get(column, column)] = None if _is_missing(value) else value
            if data.get('entry_label') is not None:
                data['entry_label'] = str(data['entry_label'])

            flags = {
                column[len('accepts_'):]: parse_flag(row[column])
                for column in self.PAYMENT_METHOD_COLUMNS
                if column in df.columns and not _is_missing(row[column])
            }
            if flags:
                data['payment_method'] = PaymentMethod(**flags)

            try:
                yield PlazaPriceRecord(**data)
            except (ValidationError, ValueError) as e:
                # Row numbers as seen in the file, header being row 1
                self.errors.append(f"row {idx + 2}: {e}")
                logger.warning(f"Skipping row {idx + 2} of {self.path.name}: {e}")


TOLL_POINT_COLUMNS = {
    'id': ['toll_id', 'uuid'],
    'name': ['plaza', 'plaza_name', 'toll_name'],
    'key': ['alt_name', 'alias', 'toll_key'],
    'number': ['plaza_number', 'toll_number'],
    'latitude': ['lat', 'y'],
    'longitude': ['lon', 'lng', 'long', 'x'],
    'website_url': ['website', 'url'],
}


def read_toll_points(path: Union[str, Path]) -> List[TollPoint]:
    """Load registry toll points from a CSV or Excel file.

    Rows with a missing or unparseable location keep a null location; they
    are stored but never match a region.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If there is neither a name nor a key column
    """
    df = normalize_columns(read_table(path), TOLL_POINT_COLUMNS)
    if 'name' not in df.columns and 'key' not in df.columns:
        raise ValueError(f"Toll point file {Path(path).name} needs a name or key column")

    points = []
    for _, row in df.iterrows():
        data = {}
        for column in TOLL_POINT_COLUMNS:
            if column in df.columns and not _is_missing(row[column]):
                data[column] = row[column]

        for text_field in ('id', 'name', 'key', 'number', 'website_url'):
            if text_field in data:
                value = data[text_field]
                if isinstance(value, float) and value.is_integer():
                    value = int(value)
                data[text_field] = str(value).strip()

        for coord in ('latitude', 'longitude'):
            if coord in data:
                try:
                    data[coord] = float(data[coord])
                except (TypeError, ValueError):
                    data[coord] = None

        points.append(TollPoint(**data))

    logger.info(f"Loaded {len(points)} toll points from {Path(path).name}")
    return points
