import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from fastapi import (
    APIRouter,
    Cookie,
    Depends,
    File,
    Form,
    Request,
    Response,
    UploadFile,
)
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from . import session as quiz_session
from .config import settings
from .database import fetch_recent_logs
from .globals import llm_client, sessions, templates, term_library
from .llm import LLMError, coaching_items_from_records, grade_generated
from .models import (
    AnswerRecord,
    GeneratedQuestion,
    GenerationConfig,
    Phase,
    SessionState,
    SourceFile,
)
from .quiz import QuizFactory
from .report import prompt_label, summarize
from .vocabulary import IngestionError, UnknownSourceError, question_count_warning

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Request bodies ---
class GenerateRequest(BaseModel):
    past_text: str = ""
    config: GenerationConfig = Field(default_factory=GenerationConfig)


class AnswerIn(BaseModel):
    question_id: str
    user_answer: str = ""


class GradeRequest(BaseModel):
    questions: List[GeneratedQuestion]
    answers: List[AnswerIn]


# --- Dependencies ---
def get_session_id(
    session_id: Optional[str] = Cookie(None, alias=settings.SESSION_COOKIE_NAME)
) -> Optional[str]:
    return session_id


def _is_expired(state: SessionState) -> bool:
    return datetime.now() - state.created_at > timedelta(
        minutes=settings.SESSION_TIMEOUT_MINUTES
    )


def get_active_session(session_id: Optional[str]) -> Optional[SessionState]:
    if not session_id or session_id not in sessions:
        return None
    state = sessions[session_id]
    if _is_expired(state):
        del sessions[session_id]
        return None
    return state


def sweep_expired_sessions() -> int:
    """Drops every timed-out session, including ones nobody comes back for."""
    expired = [sid for sid, state in sessions.items() if _is_expired(state)]
    for sid in expired:
        del sessions[sid]
    if expired:
        logger.info(f"Swept {len(expired)} expired sessions")
    return len(expired)


def _url(request: Request, path: str) -> str:
    return request.scope.get("root_path", "") + path


def _source_summary(source: SourceFile) -> Dict:
    return {
        "id": source.id,
        "name": source.name,
        "size": source.size,
        "status": source.status.value,
        "error": source.error,
        "term_count": len(source.terms),
    }


def _session_error(e: Exception) -> JSONResponse:
    return JSONResponse({"error": str(e)}, status_code=400)


def _round_started(state: SessionState) -> Dict:
    return {
        "status": "success",
        "round": state.round,
        "mode": state.mode.value,
        "total_questions": len(state.items),
    }


# --- Upload ---
@router.get("/", response_class=HTMLResponse)
async def home(request: Request):
    return templates.TemplateResponse(
        request,
        "upload.html",
        {"default_question_count": settings.DEFAULT_QUESTION_COUNT},
    )


@router.get("/api/sources")
async def list_sources(question_count: int = settings.DEFAULT_QUESTION_COUNT):
    terms = term_library.all_terms()
    return {
        "sources": [_source_summary(s) for s in term_library.get_sources()],
        "term_count": len(terms),
        "can_start": len(terms) > 0,
        "warning": question_count_warning(question_count, len(terms)),
    }


@router.post("/api/sources")
async def upload_sources(files: List[UploadFile] = File(...)):
    results = []
    for upload in files:
        name = upload.filename or "upload.csv"
        try:
            source = term_library.add_file(name, await upload.read())
        except IngestionError as e:
            logger.warning(f"Rejected upload {name}: {e}")
            results.append({"name": name, "status": "rejected", "error": str(e)})
            continue
        results.append(_source_summary(source))
    return {"results": results}


@router.post("/api/sources/{source_id}/retry")
async def retry_source(source_id: str):
    try:
        source = term_library.retry(source_id)
    except UnknownSourceError as e:
        return JSONResponse({"error": str(e)}, status_code=404)
    return _source_summary(source)


@router.delete("/api/sources/{source_id}")
async def remove_source(source_id: str):
    try:
        term_library.remove(source_id)
    except UnknownSourceError as e:
        return JSONResponse({"error": str(e)}, status_code=404)
    return {"status": "success"}


@router.delete("/api/sources")
async def clear_sources():
    term_library.clear()
    return {"status": "success"}


# --- Quiz ---
@router.post("/start", response_class=RedirectResponse)
async def start_quiz_session(
    request: Request,
    question_count: int = Form(settings.DEFAULT_QUESTION_COUNT),
    strategy: str = Form("balanced"),
):
    if strategy not in QuizFactory.STRATEGIES:
        return JSONResponse(
            {"error": f"Unknown quiz mode: {strategy}"}, status_code=400
        )
    sweep_expired_sessions()
    state = quiz_session.new_session(
        term_library.all_terms(), question_count, strategy
    )
    try:
        state = quiz_session.start_round(state)
    except quiz_session.EmptyQuizError as e:
        logger.warning(f"Cannot start quiz: {e}")
        return _session_error(e)

    new_id = str(uuid.uuid4())
    sessions[new_id] = state
    logger.info(
        f"New session: {new_id} "
        f"[terms: {len(state.terms)}, questions: {len(state.items)}, "
        f"mode: {strategy}]"
    )

    redirect = RedirectResponse(url=_url(request, "/quiz"), status_code=302)
    redirect.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=new_id,
        httponly=True,
        samesite="Lax",
    )
    return redirect


@router.get("/api/quiz")
async def get_question_data(session_id: str = Depends(get_session_id)):
    state = get_active_session(session_id)
    if not state:
        return JSONResponse({"error": "Session invalid"}, status_code=401)
    if state.phase is not Phase.QUIZ:
        return JSONResponse({"error": "No round in progress"}, status_code=409)

    item = state.items[state.current_index]
    record = (
        state.records[state.current_index]
        if quiz_session.current_item_answered(state)
        else None
    )
    return {
        "prompt_text": item.prompt_text,
        "prompt_type": item.prompt_type.value,
        "prompt_label": prompt_label(item.prompt_type),
        "source_name": item.source_name,
        "current_index": state.current_index,
        "total_questions": len(state.items),
        "is_last_question": state.current_index == len(state.items) - 1,
        "mode": state.mode.value,
        "round": state.round,
        "answer_record": record,
    }


@router.get("/quiz", response_class=HTMLResponse)
async def display_question_page(
    request: Request, session_id: str = Depends(get_session_id)
):
    state = get_active_session(session_id)
    if not state:
        return RedirectResponse(url=_url(request, "/"), status_code=302)
    if state.phase is Phase.RESULT:
        return RedirectResponse(url=_url(request, "/result"), status_code=302)
    return templates.TemplateResponse(request, "quiz.html", {})


@router.post("/submit_answer", response_model=AnswerRecord)
async def submit_answer(
    answer: str = Form(""),
    session_id: str = Depends(get_session_id),
):
    state = get_active_session(session_id)
    if not state:
        return JSONResponse({"error": "Invalid session"}, status_code=401)
    try:
        state = quiz_session.submit_answer(state, answer)
    except quiz_session.SessionError as e:
        return _session_error(e)
    sessions[session_id] = state
    return state.records[-1]


@router.post("/next")
async def next_question(session_id: str = Depends(get_session_id)):
    state = get_active_session(session_id)
    if not state:
        return JSONResponse({"error": "Invalid session"}, status_code=401)
    try:
        state = quiz_session.advance(state)
    except quiz_session.SessionError as e:
        return _session_error(e)
    sessions[session_id] = state
    return {
        "finished": state.phase is Phase.RESULT,
        "current_index": state.current_index,
    }


# --- Result ---
@router.get("/api/result")
async def get_result_data(session_id: str = Depends(get_session_id)):
    state = get_active_session(session_id)
    if not state:
        return JSONResponse({"error": "Session invalid"}, status_code=401)
    if state.phase is not Phase.RESULT or state.result is None:
        return JSONResponse({"error": "Round not finished"}, status_code=409)
    return summarize(state.result)


@router.get("/result", response_class=HTMLResponse)
async def result_page(request: Request, session_id: str = Depends(get_session_id)):
    state = get_active_session(session_id)
    if not state:
        return RedirectResponse(url=_url(request, "/"), status_code=302)
    if state.phase is Phase.QUIZ:
        return RedirectResponse(url=_url(request, "/quiz"), status_code=302)
    return templates.TemplateResponse(request, "result.html", {})


@router.post("/api/retest")
async def retest_wrong_answers(session_id: str = Depends(get_session_id)):
    state = get_active_session(session_id)
    if not state:
        return JSONResponse({"error": "Session invalid"}, status_code=401)
    try:
        state = quiz_session.retest(state)
    except quiz_session.SessionError as e:
        return _session_error(e)
    sessions[session_id] = state
    logger.info(
        f"Retest round {state.round} for {session_id} [terms: {len(state.pool)}]"
    )
    return _round_started(state)


@router.post("/api/restart")
async def restart_quiz(session_id: str = Depends(get_session_id)):
    """Plays a fresh normal round over every uploaded term."""
    state = get_active_session(session_id)
    if not state:
        return JSONResponse({"error": "Session invalid"}, status_code=401)
    try:
        state = quiz_session.start_round(quiz_session.restart(state))
    except quiz_session.SessionError as e:
        return _session_error(e)
    sessions[session_id] = state
    return _round_started(state)


@router.post("/api/reset")
async def reset_session(response: Response, session_id: str = Depends(get_session_id)):
    """Drops the session and every uploaded file."""
    if session_id in sessions:
        del sessions[session_id]
    term_library.clear()
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {"status": "success"}


# --- Hosted model ---
@router.post("/api/generate")
def generate_questions(body: GenerateRequest):
    terms = term_library.all_terms()
    if not terms:
        return JSONResponse({"error": "no terms"}, status_code=400)
    try:
        questions = llm_client.generate_questions(terms, body.config, body.past_text)
    except LLMError as e:
        return JSONResponse({"error": str(e)}, status_code=502)
    return {"questions": questions}


@router.post("/api/grade")
def grade_generated_questions(body: GradeRequest):
    results = grade_generated(body.questions, [a.model_dump() for a in body.answers])
    by_id = {q.id: q for q in body.questions}
    wrong = [
        {
            "question_id": r.question_id,
            "prompt": by_id[r.question_id].prompt,
            "answer": by_id[r.question_id].answer,
            "user_answer": r.user_answer,
            "explanation": by_id[r.question_id].explanation,
        }
        for r in results
        if not r.is_correct and r.question_id in by_id
    ]
    if not wrong:
        return {"results": results, "notebook": []}
    try:
        notebook = llm_client.coach_wrong_answers(wrong)
    except LLMError as e:
        return JSONResponse({"error": str(e)}, status_code=502)
    return {"results": results, "notebook": notebook}


@router.post("/api/feedback")
def round_feedback(session_id: str = Depends(get_session_id)):
    """Coaching notes for the wrong answers of the finished round."""
    state = get_active_session(session_id)
    if not state:
        return JSONResponse({"error": "Session invalid"}, status_code=401)
    if state.phase is not Phase.RESULT or state.result is None:
        return JSONResponse({"error": "Round not finished"}, status_code=409)
    try:
        notebook = llm_client.coach_wrong_answers(
            coaching_items_from_records(state.result.records)
        )
    except LLMError as e:
        return JSONResponse({"error": str(e)}, status_code=502)
    return {"notebook": notebook}


@router.get("/api/logs")
async def recent_logs(limit: int = 50):
    if not settings.LOG_TO_DB:
        return JSONResponse({"error": "Database logging is disabled"}, status_code=404)
    return {"logs": fetch_recent_logs(limit)}
