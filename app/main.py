"""
Student Manager - Main FastAPI Application
Student and teacher lookups served from the cached spreadsheet tables
"""
import logging
from typing import List, NoReturn, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException

from app.cache import ErrorKind, TableError
from app.models import StatementType
from app.schemas import (
    ErrorDetail,
    PracticeSubgroupDto,
    StudentDto,
    SubjectDto,
    SubjectInfoDto,
    TeacherAttachLinkDto,
    UserSubjectInfoDto,
)
from app.tables import TableRegistry, get_table_registry
from app.wiki_client import WikiClient, WikiServiceError, get_wiki_client, page_title_from_link
from config.settings import settings

load_dotenv()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("main")

APP_VERSION = "v1.0.0"
APP_NAME = "Student Manager"

app = FastAPI(
    title=APP_NAME,
    description="Students, teachers, subjects and statements from the university spreadsheets",
    version=APP_VERSION
)


def raise_for_error(error: TableError, not_found_status: int = 404) -> NoReturn:
    """
    Translate a failed lookup into an HTTP error.

    NOT_FOUND becomes ``not_found_status``; FETCH_FAILED and
    INDEX_UNAVAILABLE become 503 so clients can tell a transient outage
    from a missing entity.
    """
    if error.kind == ErrorKind.NOT_FOUND:
        status_code = not_found_status
    else:
        logger.warning(f"Transient table error: {error.code} {error.message}")
        status_code = 503
    raise HTTPException(status_code=status_code, detail=ErrorDetail.from_error(error).model_dump())


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "source": "tables", "mode": "cached"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}"
    }


@app.get("/cache/stats")
def cache_stats(tables: TableRegistry = Depends(get_table_registry)):
    """Get cache statistics."""
    return tables.get_stats()


@app.post("/cache/invalidate/{table}")
def invalidate_table(table: str, tables: TableRegistry = Depends(get_table_registry)):
    """Drop a table's cached entries so the next read refetches it."""
    try:
        facade = tables.get(table)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown table {table}")
    return {"table": table, "invalidated": facade.invalidate()}


@app.post("/cache/clear")
def clear_cache(tables: TableRegistry = Depends(get_table_registry)):
    """Drop every cached entry of every table."""
    return {"cleared": tables.store.clear()}


# ===== STUDENT ENDPOINTS =====

@app.get("/student/{telegram_id}", response_model=StudentDto)
def get_student(telegram_id: str, tables: TableRegistry = Depends(get_table_registry)):
    user = tables.students.read_by_telegram_id(telegram_id)
    if user.is_failed:
        raise_for_error(user.error)
    return StudentDto.from_row(user.value)


@app.get("/student/{telegram_id}/subjects", response_model=List[SubjectInfoDto])
def get_student_subjects(telegram_id: str, tables: TableRegistry = Depends(get_table_registry)):
    user = tables.students.read_by_telegram_id(telegram_id)
    if user.is_failed:
        raise_for_error(user.error)

    if not user.value.group_id:
        return []

    subjects = tables.subjects.read_by_group_id(user.value.group_id)
    if subjects.is_failed:
        raise_for_error(subjects.error)
    return [SubjectInfoDto.from_row(s) for s in subjects.value]


@app.get("/student/{telegram_id}/subject/{subject_id}", response_model=UserSubjectInfoDto)
def get_student_subject(
    telegram_id: str,
    subject_id: str,
    tables: TableRegistry = Depends(get_table_registry),
):
    user = tables.students.read_by_telegram_id(telegram_id)
    if user.is_failed:
        raise_for_error(user.error)

    subject = tables.subjects.read_by_id(subject_id)
    if subject.is_failed:
        raise_for_error(subject.error)
    if subject.value.group_id != user.value.group_id:
        raise HTTPException(status_code=400, detail="SUBJECT_IS_NOT_FOR_USER")

    subgroups = tables.subgroups.read_by_subject_id(subject.value.id)
    if subgroups.is_failed:
        raise_for_error(subgroups.error)

    # Statements only decorate the answer
    statements = tables.statements.read_by_subject_id(subject.value.id).value_or([])

    lecturer = None
    if subject.value.teacher_id:
        lecturer = tables.teachers.read_by_id(subject.value.teacher_id).value_or(None)

    subgroup_dtos = []
    for subgroup in subgroups.value:
        teacher = None
        if subgroup.teacher_id:
            teacher = tables.teachers.read_by_id(subgroup.teacher_id).value_or(None)
        subgroup_dtos.append(PracticeSubgroupDto.from_row(subgroup, teacher))

    subgroup_ids = {s.id for s in subgroups.value}
    lecture_statement: Optional[str] = next(
        (s.url for s in statements if s.statement_type == StatementType.LECTURE),
        None,
    )
    practice_statements = [s.url for s in statements if s.subgroup_id in subgroup_ids]

    return UserSubjectInfoDto(
        subject=SubjectDto.from_row(subject.value, lecturer),
        subgroups=subgroup_dtos,
        lecture_statement=lecture_statement,
        practice_statements=practice_statements,
    )


# ===== TEACHER ENDPOINTS =====

@app.get("/teacher/{telegram_id}/subjects", response_model=List[SubjectInfoDto])
def get_teacher_subjects(telegram_id: str, tables: TableRegistry = Depends(get_table_registry)):
    """Subjects the teacher lectures or runs a practice subgroup for."""
    user = tables.teachers.read_by_telegram_id(telegram_id)
    if user.is_failed:
        raise_for_error(user.error)

    subjects = tables.subjects.read_by_teacher_id(user.value.id)
    if subjects.is_failed:
        raise_for_error(subjects.error)

    subgroups = tables.subgroups.read_by_teacher_id(user.value.id)
    if subgroups.is_failed:
        raise_for_error(subgroups.error)

    subject_ids = [s.id for s in subjects.value]
    subject_ids += [s.subject_id for s in subgroups.value if s.subject_id]
    subject_ids = list(dict.fromkeys(subject_ids))

    infos = tables.subjects.read_by_ids(subject_ids)
    if infos.is_failed:
        raise_for_error(infos.error)
    return [SubjectInfoDto.from_row(s) for s in infos.value]


@app.post("/teacher/subject/{subject_id}/section/{section_id}/attach/link")
def attach_link_to_wiki(
    subject_id: str,
    section_id: str,
    info: TeacherAttachLinkDto,
    tables: TableRegistry = Depends(get_table_registry),
    wiki: WikiClient = Depends(get_wiki_client),
):
    """Attach a link to a section of the subject's CSC wiki page."""
    subject = tables.subjects.read_by_id(subject_id)
    if subject.is_failed:
        raise_for_error(subject.error)

    try:
        title = page_title_from_link(subject.value.link_to_csc)
    except ValueError as e:
        logger.error(f"Invalid post of tag {info.tag_name} to section {section_id}: {e}")
        raise HTTPException(status_code=400, detail="REQUEST_INVALID")

    try:
        wiki.append_link(section_id, info.link, info.tag_name, title)
    except WikiServiceError:
        raise HTTPException(status_code=502, detail="CSC_TIMEOUT")

    return {"status": "ok", "title": title, "section": section_id}
