"""
Row models for the spreadsheet-backed tables.

Each row carries a string ``id``. Foreign keys (group, teacher, subject,
subgroup) are what the secondary indices group by.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


def _field(data: Dict[str, Any], *names: str, default: Optional[str] = None) -> Optional[str]:
    """First non-empty value among ``names``, as a stripped string."""
    for name in names:
        value = data.get(name)
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return default


def _required(data: Dict[str, Any], *names: str) -> str:
    value = _field(data, *names)
    if value is None:
        raise ValueError(f"Record is missing required field {names[0]!r}: {data!r}")
    return value


class StatementType(Enum):
    """Kind of grade statement sheet."""
    LECTURE = "lecture"
    PRACTICE = "practice"

    @classmethod
    def parse(cls, value: Optional[str]) -> "StatementType":
        if value is None:
            return cls.PRACTICE
        normalized = value.strip().lower()
        if normalized in ("lecture", "lec", "0"):
            return cls.LECTURE
        return cls.PRACTICE


@dataclass(frozen=True)
class StudentRow:
    id: str
    telegram_id: Optional[str]
    isu_id: Optional[str]
    group_id: Optional[str]
    name: str
    surname: str
    patronymic: Optional[str] = None

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "StudentRow":
        return cls(
            id=_required(data, "id", "Id"),
            telegram_id=_field(data, "telegram", "telegram_id", "Telegram"),
            isu_id=_field(data, "isu_id", "isuId", "IsuId"),
            group_id=_field(data, "group_id", "idGroup", "IdGroup"),
            name=_field(data, "name", "Name", default=""),
            surname=_field(data, "surname", "Surname", default=""),
            patronymic=_field(data, "patronymic", "Patronymic"),
        )


@dataclass(frozen=True)
class TeacherRow:
    id: str
    telegram_id: Optional[str]
    name: str
    surname: str
    patronymic: Optional[str] = None

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "TeacherRow":
        return cls(
            id=_required(data, "id", "Id"),
            telegram_id=_field(data, "telegram", "telegram_id", "Telegram"),
            name=_field(data, "name", "Name", default=""),
            surname=_field(data, "surname", "Surname", default=""),
            patronymic=_field(data, "patronymic", "Patronymic"),
        )


@dataclass(frozen=True)
class GroupRow:
    id: str
    name: str

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "GroupRow":
        return cls(
            id=_required(data, "id", "Id"),
            name=_field(data, "name", "Name", default=""),
        )


@dataclass(frozen=True)
class SubjectRow:
    id: str
    title: str
    term: Optional[str]
    group_id: Optional[str]
    teacher_id: Optional[str]
    link_to_csc: Optional[str] = None

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "SubjectRow":
        return cls(
            id=_required(data, "id", "Id"),
            title=_field(data, "title", "Title", default=""),
            term=_field(data, "term", "Term"),
            group_id=_field(data, "group_id", "idGroup", "IdGroup"),
            teacher_id=_field(data, "teacher_id", "idTeacher", "IdTeacher"),
            link_to_csc=_field(data, "link_to_csc", "linkToCSC", "LinkToCSC"),
        )


@dataclass(frozen=True)
class SubgroupRow:
    """Practice subgroup of a subject, run by one teacher."""
    id: str
    subject_id: Optional[str]
    teacher_id: Optional[str]
    name: str = ""

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "SubgroupRow":
        return cls(
            id=_required(data, "id", "Id"),
            subject_id=_field(data, "subject_id", "idSubject", "IdSubject"),
            teacher_id=_field(data, "teacher_id", "idTeacher", "IdTeacher"),
            name=_field(data, "name", "Name", default=""),
        )


@dataclass(frozen=True)
class StatementRow:
    """Pointer to the spreadsheet tab where grades of a subject are kept."""
    id: str
    subject_id: Optional[str]
    subgroup_id: Optional[str]
    statement_type: StatementType
    spreadsheet_id: str
    sheet_id: str

    @property
    def url(self) -> str:
        return f"https://docs.google.com/spreadsheets/d/{self.spreadsheet_id}/edit#gid={self.sheet_id}"

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "StatementRow":
        return cls(
            id=_required(data, "id", "Id"),
            subject_id=_field(data, "subject_id", "idSubject", "IdSubject"),
            subgroup_id=_field(data, "subgroup_id", "idSubgroup", "IdSubgroup"),
            statement_type=StatementType.parse(
                _field(data, "statement_type", "statementType", "StatementType")
            ),
            spreadsheet_id=_field(data, "spreadsheet_id", "spreadsheetId", "SpreadsheetId", default=""),
            sheet_id=_field(data, "sheet_id", "sheetId", "SheetId", default="0"),
        )
