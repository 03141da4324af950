"""Evaluation modalities: config normalization and submission validation.

``evaluationConfig`` and ``submissionData`` are keyed by modality
(``{"quiz": {...}}``, ``{"file": {...}}``, ...). Both are parsed into the
typed variants in ``portal.gamification.schemas`` at the boundary, on write
and again on every read that acts on them.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

import pydantic

from portal.db.models import Challenge
from portal.errors import ConflictError, ValidationError, field_error
from portal.gamification.schemas import (
    EvaluationConfig,
    FileConfig,
    FileSubmission,
    QrCodeConfig,
    QrCodeSubmission,
    QuizConfig,
    QuizSubmission,
    SubmissionPayload,
    TextConfig,
    TextSubmission,
)

EVALUATION_TYPES = ("none", "quiz", "text", "file", "qrcode")

_CONFIG_MODELS: dict[str, type[pydantic.BaseModel]] = {
    "quiz": QuizConfig,
    "text": TextConfig,
    "file": FileConfig,
    "qrcode": QrCodeConfig,
}

FILE_CATEGORY_EXTENSIONS: dict[str, frozenset[str]] = {
    "image": frozenset({"jpg", "jpeg", "png", "gif", "webp", "bmp", "svg", "heic"}),
    "document": frozenset({"pdf", "doc", "docx", "odt", "txt", "rtf"}),
    "spreadsheet": frozenset({"xls", "xlsx", "ods", "csv"}),
    "presentation": frozenset({"ppt", "pptx", "odp", "key"}),
    "video": frozenset({"mp4", "mov", "avi", "mkv", "webm"}),
    "audio": frozenset({"mp3", "wav", "ogg", "m4a", "aac"}),
    "archive": frozenset({"zip", "rar", "7z", "tar", "gz"}),
}


def _pydantic_errors(prefix: str, exc: pydantic.ValidationError) -> list[dict[str, str]]:
    return [
        field_error(".".join([prefix, *(str(p) for p in err["loc"])]), err["msg"])
        for err in exc.errors()
    ]


# ---------------------------------------------------------------------------
# Config (admin write path)
# ---------------------------------------------------------------------------


def normalize_evaluation_config(
    evaluation_type: str,
    config: EvaluationConfig | dict[str, Any] | None,
) -> dict[str, Any] | None:
    """Validate the config block for ``evaluation_type`` and return the stored shape.

    Only the block matching the evaluation type is kept. ``none`` stores no config.
    Raises ValidationError when the matching block is absent or malformed.
    """
    if evaluation_type not in EVALUATION_TYPES:
        raise ValidationError(
            f"Unknown evaluation type: {evaluation_type}",
            errors=[field_error("evaluationType", "unknown evaluation type")],
        )
    if evaluation_type == "none":
        return None

    if isinstance(config, dict):
        try:
            config = EvaluationConfig.model_validate(config)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Invalid evaluation config", errors=_pydantic_errors("evaluationConfig", e)
            ) from e

    block = getattr(config, evaluation_type) if config is not None else None
    if block is None:
        raise ValidationError(
            f"evaluationConfig.{evaluation_type} is required for evaluation type '{evaluation_type}'",
            errors=[field_error(f"evaluationConfig.{evaluation_type}", "missing configuration block")],
        )
    return {evaluation_type: block.model_dump(by_alias=True)}


def derive_challenge_points(evaluation_type: str, config: dict[str, Any] | None, points: int) -> int:
    """Challenge points for storage: file challenges are the sum of their requirement points."""
    if evaluation_type != "file" or not config:
        return points
    file_config = FileConfig.model_validate(config["file"])
    return sum(req.points for req in file_config.file_requirements)


def load_config(challenge: Challenge) -> pydantic.BaseModel | None:
    """Parse the stored config of a challenge into its typed variant."""
    if challenge.evaluation_type == "none":
        return None
    raw = (challenge.evaluation_config or {}).get(challenge.evaluation_type)
    if raw is None:
        raise ValidationError(f"Challenge {challenge.id} has no {challenge.evaluation_type} configuration")
    try:
        return _CONFIG_MODELS[challenge.evaluation_type].model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Challenge {challenge.id} has a malformed evaluation config",
            errors=_pydantic_errors("evaluationConfig", e),
        ) from e


# ---------------------------------------------------------------------------
# Submissions (user write path)
# ---------------------------------------------------------------------------


def score_quiz(config: QuizConfig, submission: QuizSubmission) -> dict[str, Any]:
    """Score quiz answers. Unanswered questions count as wrong."""
    answers = {a.question_id: a.answer for a in submission.answers}
    unknown = set(answers) - {q.id for q in config.questions}
    if unknown:
        raise ValidationError(
            "Answers reference unknown questions",
            errors=[field_error("quiz.answers", f"unknown question ids: {sorted(unknown)}")],
        )

    correct = sum(1 for q in config.questions if answers.get(q.id) == q.correct_answer)
    total = len(config.questions)
    score = round(correct * 100 / total) if total else 0
    return {
        "answers": [a.model_dump(by_alias=True) for a in submission.answers],
        "correctAnswers": correct,
        "totalQuestions": total,
        "score": score,
        "passed": score >= config.min_score,
    }


def check_quiz_attempts(config: QuizConfig, attempt: int) -> None:
    """Raise ConflictError when a quiz allowing multiple attempts has used them all."""
    if config.allow_multiple_attempts and attempt > config.max_attempts:
        raise ConflictError(f"Maximum number of attempts ({config.max_attempts}) reached")


def quiz_award(points: int, config: QuizConfig, attempt: int) -> int:
    """Points awarded for a quiz approved on ``attempt``, reduced per extra attempt."""
    if not config.allow_multiple_attempts or attempt <= 1:
        return points
    reduction = min(100, config.score_reduction_per_attempt * (attempt - 1))
    return points * (100 - reduction) // 100


def _validate_text(config: TextConfig, submission: TextSubmission) -> dict[str, Any]:
    content = submission.content.strip()
    if not content:
        raise ValidationError("Text answer is empty", errors=[field_error("text.content", "must not be empty")])
    if len(content) > config.max_length:
        raise ValidationError(
            f"Text answer exceeds {config.max_length} characters",
            errors=[field_error("text.content", f"max length is {config.max_length}")],
        )
    return {"content": content}


def _extension(name: str) -> str:
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


def _allowed_extensions(accepted_types: list[str], file_category: str | None) -> frozenset[str] | None:
    """Extension whitelist for a requirement; None means anything is accepted."""
    if accepted_types:
        return frozenset(accepted_types)
    if file_category and file_category != "any":
        if file_category not in FILE_CATEGORY_EXTENSIONS:
            raise ValidationError(f"Unknown file category: {file_category}")
        return FILE_CATEGORY_EXTENSIONS[file_category]
    return None


def _validate_files(
    config: FileConfig,
    submission: FileSubmission,
    owns_upload: Callable[[str], bool] | None = None,
) -> dict[str, Any]:
    requirements = {r.id: r for r in config.file_requirements}
    errors: list[dict[str, str]] = []

    if len(submission.files) > config.max_files:
        errors.append(field_error("file.files", f"at most {config.max_files} items allowed"))

    per_requirement: dict[str, int] = {}
    for index, item in enumerate(submission.files):
        where = f"file.files.{index}"
        requirement = requirements.get(item.requirement_id)
        if requirement is None:
            errors.append(field_error(f"{where}.requirementId", f"unknown requirement {item.requirement_id}"))
            continue
        per_requirement[requirement.id] = per_requirement.get(requirement.id, 0) + 1

        if item.submission_type != requirement.submission_type:
            errors.append(field_error(f"{where}.submissionType", f"requirement expects a {requirement.submission_type}"))
            continue

        if requirement.submission_type == "link":
            if urlparse(item.url).scheme not in ("http", "https"):
                errors.append(field_error(f"{where}.url", "links must be http(s) URLs"))
            continue

        if owns_upload is not None and not owns_upload(item.url):
            errors.append(field_error(f"{where}.url", "must be a file you uploaded for this challenge"))
            continue
        allowed = _allowed_extensions(requirement.accepted_types, requirement.file_category)
        if allowed is not None and _extension(item.name or item.url) not in allowed:
            errors.append(field_error(f"{where}.name", f"file type not accepted for '{requirement.name}'"))
        if item.size is not None and item.size > requirement.max_size:
            errors.append(field_error(f"{where}.size", f"file exceeds {requirement.max_size} bytes"))

    for requirement_id, count in per_requirement.items():
        if count > 1 and not requirements[requirement_id].allow_multiple:
            errors.append(field_error("file.files", f"requirement {requirement_id} accepts a single item"))

    if errors:
        raise ValidationError("File submission does not match the challenge requirements", errors=errors)
    return {"files": [item.model_dump(by_alias=True) for item in submission.files]}


def check_upload(config: FileConfig, requirement_id: str, filename: str, size: int) -> None:
    """Reject an upload the requirement would not accept, before it reaches storage."""
    requirement = next((r for r in config.file_requirements if r.id == requirement_id), None)
    if requirement is None:
        raise ValidationError(
            f"Unknown requirement {requirement_id}",
            errors=[field_error("requirementId", "not a requirement of this challenge")],
        )
    if requirement.submission_type != "file":
        raise ValidationError(
            f"Requirement '{requirement.name}' expects a link",
            errors=[field_error("requirementId", "requirement expects a link")],
        )
    allowed = _allowed_extensions(requirement.accepted_types, requirement.file_category)
    if allowed is not None and _extension(filename) not in allowed:
        raise ValidationError(
            f"File type not accepted for '{requirement.name}'",
            errors=[field_error("file", f"accepted: {', '.join(sorted(allowed))}")],
        )
    if size > requirement.max_size:
        raise ValidationError(
            f"File exceeds {requirement.max_size} bytes",
            errors=[field_error("file", f"max size is {requirement.max_size} bytes")],
        )


def _validate_qrcode(config: QrCodeConfig, submission: QrCodeSubmission) -> dict[str, Any]:
    scanned = submission.scanned_data.strip()
    if scanned != config.qr_code_data.strip():
        raise ValidationError("Scanned QR code does not match", errors=[field_error("qrcode.scannedData", "mismatch")])
    return {"scannedData": scanned}


def validate_submission(
    challenge: Challenge,
    payload: SubmissionPayload | dict[str, Any],
    attempt: int = 1,
    owns_upload: Callable[[str], bool] | None = None,
) -> dict[str, Any]:
    """Validate a submission payload against the challenge config.

    Returns the ``submissionData`` to persist, keyed by modality. Raises
    ValidationError on any shape or rule violation, before anything is written.
    ``owns_upload`` decides whether an uploaded file URL belongs to the submitter.
    """
    if isinstance(payload, dict):
        try:
            payload = SubmissionPayload.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError("Invalid submission payload", errors=_pydantic_errors("submissionData", e)) from e

    evaluation_type = challenge.evaluation_type
    submitted_at = datetime.now(timezone.utc).isoformat()
    if evaluation_type == "none":
        return {"submittedAt": submitted_at}

    block = getattr(payload, evaluation_type)
    if block is None:
        raise ValidationError(
            f"submissionData.{evaluation_type} is required for this challenge",
            errors=[field_error(f"submissionData.{evaluation_type}", "missing")],
        )

    config = load_config(challenge)
    if evaluation_type == "quiz":
        check_quiz_attempts(config, attempt)  # type: ignore[arg-type]
        data = score_quiz(config, block)  # type: ignore[arg-type]
        data["attempt"] = attempt
    elif evaluation_type == "text":
        data = _validate_text(config, block)  # type: ignore[arg-type]
    elif evaluation_type == "file":
        data = _validate_files(config, block, owns_upload)  # type: ignore[arg-type]
    else:
        data = _validate_qrcode(config, block)  # type: ignore[arg-type]

    data["submittedAt"] = submitted_at
    return {evaluation_type: data}


def submitted_file_urls(submission_type: str, submission_data: dict[str, Any] | None) -> list[str]:
    """URLs of uploaded files (not external links) referenced by a submission."""
    if submission_type != "file" or not submission_data:
        return []
    files = (submission_data.get("file") or {}).get("files") or []
    return [
        f["url"]
        for f in files
        if isinstance(f, dict) and f.get("url") and f.get("submissionType", "file") == "file"
    ]
