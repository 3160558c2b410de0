"""
Pydantic schemas for API request/response models
"""
from pydantic import BaseModel
from typing import Optional, List

from app.cache import TableError
from app.models import StudentRow, SubgroupRow, SubjectRow, TeacherRow


# ===== USER SCHEMAS =====

class StudentDto(BaseModel):
    """Student profile"""
    id: str
    telegram_id: Optional[str] = None
    isu_id: Optional[str] = None
    group_id: Optional[str] = None
    first_name: str
    last_name: str
    patronymic: Optional[str] = None

    @classmethod
    def from_row(cls, row: StudentRow) -> "StudentDto":
        return cls(
            id=row.id,
            telegram_id=row.telegram_id,
            isu_id=row.isu_id,
            group_id=row.group_id,
            first_name=row.name,
            last_name=row.surname,
            patronymic=row.patronymic,
        )


class TeacherDto(BaseModel):
    """Lecturer or practice teacher"""
    id: str
    first_name: str
    last_name: str
    patronymic: Optional[str] = None

    @classmethod
    def from_row(cls, row: TeacherRow) -> "TeacherDto":
        return cls(
            id=row.id,
            first_name=row.name,
            last_name=row.surname,
            patronymic=row.patronymic,
        )


# ===== SUBJECT SCHEMAS =====

class SubjectInfoDto(BaseModel):
    """Subject list item"""
    id: str
    name: str

    @classmethod
    def from_row(cls, row: SubjectRow) -> "SubjectInfoDto":
        return cls(id=row.id, name=row.title)


class SubjectDto(BaseModel):
    """Full subject card"""
    id: str
    name: str
    semester: Optional[str] = None
    group_id: Optional[str] = None
    csc_link: Optional[str] = None
    lector_id: Optional[str] = None
    lecturer: Optional[TeacherDto] = None

    @classmethod
    def from_row(cls, row: SubjectRow, lecturer: Optional[TeacherRow] = None) -> "SubjectDto":
        return cls(
            id=row.id,
            name=row.title,
            semester=row.term,
            group_id=row.group_id,
            csc_link=row.link_to_csc,
            lector_id=row.teacher_id,
            lecturer=TeacherDto.from_row(lecturer) if lecturer else None,
        )


class PracticeSubgroupDto(BaseModel):
    """Practice subgroup with its teacher"""
    id: str
    name: str
    subject_id: Optional[str] = None
    teacher: Optional[TeacherDto] = None

    @classmethod
    def from_row(cls, row: SubgroupRow, teacher: Optional[TeacherRow] = None) -> "PracticeSubgroupDto":
        return cls(
            id=row.id,
            name=row.name,
            subject_id=row.subject_id,
            teacher=TeacherDto.from_row(teacher) if teacher else None,
        )


class UserSubjectInfoDto(BaseModel):
    """Subject as seen by one student"""
    subject: SubjectDto
    subgroups: List[PracticeSubgroupDto] = []
    lecture_statement: Optional[str] = None
    practice_statements: List[str] = []


# ===== REQUEST SCHEMAS =====

class TeacherAttachLinkDto(BaseModel):
    """Link a teacher wants attached to a CSC wiki section"""
    link: str
    tag_name: str


class ErrorDetail(BaseModel):
    """Error body for failed lookups"""
    code: str
    message: str
    table: Optional[str] = None

    @classmethod
    def from_error(cls, error: TableError) -> "ErrorDetail":
        return cls(**error.to_dict())
