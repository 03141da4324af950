"""Unit tests for evaluation config normalization and submission validation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from portal.db.models import Challenge
from portal.errors import ConflictError, ValidationError
from portal.gamification.evaluation import (
    check_quiz_attempts,
    derive_challenge_points,
    normalize_evaluation_config,
    quiz_award,
    score_quiz,
    submitted_file_urls,
    validate_submission,
)
from portal.gamification.schemas import QuizConfig, QuizSubmission

QUIZ = {
    "questions": [
        {"id": "q1", "question": "2 + 2?", "options": ["3", "4"], "correctAnswer": 1},
        {"id": "q2", "question": "Capital of France?", "options": ["Paris", "Rome"], "correctAnswer": 0},
    ],
    "minScore": 70,
}


def _challenge(evaluation_type: str, config: dict | None, points: int = 100) -> Challenge:
    now = datetime.now(timezone.utc)
    return Challenge(
        id=1,
        title="Test",
        points=points,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=1),
        evaluation_type=evaluation_type,
        evaluation_config=normalize_evaluation_config(evaluation_type, config),
    )


def _file_config(**overrides) -> dict:
    requirement = {
        "id": "r1",
        "name": "Photo",
        "points": 100,
        "fileCategory": "image",
    }
    requirement.update(overrides.pop("requirement", {}))
    config = {"fileRequirements": [requirement], "maxFiles": 1}
    config.update(overrides)
    return {"file": config}


class TestNormalizeConfig:
    """Config blocks are validated and reduced to the matching modality."""

    def test_none_stores_no_config(self):
        assert normalize_evaluation_config("none", {"quiz": QUIZ}) is None

    def test_only_matching_block_kept(self):
        stored = normalize_evaluation_config("quiz", {"quiz": QUIZ, "text": {"maxLength": 10}})
        assert set(stored) == {"quiz"}
        assert stored["quiz"]["minScore"] == 70
        assert stored["quiz"]["questions"][0]["correctAnswer"] == 1

    def test_missing_block_rejected(self):
        with pytest.raises(ValidationError, match="evaluationConfig.quiz is required"):
            normalize_evaluation_config("quiz", {"text": {"maxLength": 10}})

    def test_malformed_block_has_field_errors(self):
        bad = {"quiz": {"questions": [{"id": "q1", "question": "?", "options": ["a", "b"], "correctAnswer": 5}]}}
        with pytest.raises(ValidationError) as exc_info:
            normalize_evaluation_config("quiz", bad)
        assert exc_info.value.errors
        assert exc_info.value.errors[0]["field"].startswith("evaluationConfig")

    def test_duplicate_requirement_ids_rejected(self):
        config = {"file": {"fileRequirements": [
            {"id": "r1", "name": "A", "points": 10},
            {"id": "r1", "name": "B", "points": 20},
        ]}}
        with pytest.raises(ValidationError):
            normalize_evaluation_config("file", config)

    def test_accepted_types_normalized(self):
        stored = normalize_evaluation_config("file", _file_config(requirement={"acceptedTypes": [".PDF", " docx "]}))
        assert stored["file"]["fileRequirements"][0]["acceptedTypes"] == ["pdf", "docx"]


class TestDerivedPoints:
    """File challenges are worth the sum of their requirements."""

    def test_file_points_are_requirement_sum(self):
        config = normalize_evaluation_config("file", {"file": {"fileRequirements": [
            {"id": "r1", "name": "A", "points": 30},
            {"id": "r2", "name": "B", "points": 45},
        ], "maxFiles": 2}})
        assert derive_challenge_points("file", config, 999) == 75

    def test_other_types_keep_given_points(self):
        config = normalize_evaluation_config("quiz", {"quiz": QUIZ})
        assert derive_challenge_points("quiz", config, 40) == 40
        assert derive_challenge_points("none", None, 10) == 10


class TestQuizScoring:
    """Quiz scoring, attempts and point reduction."""

    def test_partial_score_fails_threshold(self):
        config = QuizConfig.model_validate(QUIZ)
        result = score_quiz(config, QuizSubmission.model_validate({"answers": [
            {"questionId": "q1", "answer": 1},
            {"questionId": "q2", "answer": 1},
        ]}))
        assert result["correctAnswers"] == 1
        assert result["totalQuestions"] == 2
        assert result["score"] == 50
        assert result["passed"] is False

    def test_unanswered_counts_as_wrong(self):
        config = QuizConfig.model_validate(QUIZ)
        result = score_quiz(config, QuizSubmission.model_validate({"answers": [{"questionId": "q1", "answer": 1}]}))
        assert result["score"] == 50

    def test_unknown_question_rejected(self):
        config = QuizConfig.model_validate(QUIZ)
        with pytest.raises(ValidationError, match="unknown questions"):
            score_quiz(config, QuizSubmission.model_validate({"answers": [{"questionId": "zz", "answer": 0}]}))

    def test_attempt_limit(self):
        config = QuizConfig.model_validate({**QUIZ, "allowMultipleAttempts": True, "maxAttempts": 2})
        check_quiz_attempts(config, 2)
        with pytest.raises(ConflictError, match="Maximum number of attempts"):
            check_quiz_attempts(config, 3)

    def test_attempt_limit_ignored_without_multiple_attempts(self):
        config = QuizConfig.model_validate(QUIZ)
        check_quiz_attempts(config, 5)

    def test_award_reduced_per_extra_attempt(self):
        config = QuizConfig.model_validate(
            {**QUIZ, "allowMultipleAttempts": True, "maxAttempts": 5, "scoreReductionPerAttempt": 20}
        )
        assert quiz_award(100, config, 1) == 100
        assert quiz_award(100, config, 3) == 60
        assert quiz_award(100, config, 7) == 0

    def test_award_not_reduced_without_multiple_attempts(self):
        config = QuizConfig.model_validate({**QUIZ, "scoreReductionPerAttempt": 50})
        assert quiz_award(100, config, 2) == 100


class TestValidateSubmission:
    """Payloads are checked against the challenge config before anything is stored."""

    def test_none_type_needs_no_payload(self):
        data = validate_submission(_challenge("none", None), {})
        assert "submittedAt" in data

    def test_missing_modality_block_rejected(self):
        challenge = _challenge("text", {"text": {"maxLength": 20}})
        with pytest.raises(ValidationError, match="submissionData.text is required"):
            validate_submission(challenge, {"qrcode": {"scannedData": "x"}})

    def test_text_trimmed_and_bounded(self):
        challenge = _challenge("text", {"text": {"maxLength": 5}})
        assert validate_submission(challenge, {"text": {"content": "  hello "}})["text"]["content"] == "hello"
        with pytest.raises(ValidationError, match="exceeds 5 characters"):
            validate_submission(challenge, {"text": {"content": "too long"}})
        with pytest.raises(ValidationError, match="empty"):
            validate_submission(challenge, {"text": {"content": "   "}})

    def test_qrcode_exact_match_after_trim(self):
        challenge = _challenge("qrcode", {"qrcode": {"qrCodeData": "EVENT-2026"}})
        assert validate_submission(challenge, {"qrcode": {"scannedData": " EVENT-2026\n"}})["qrcode"]["scannedData"] == "EVENT-2026"
        with pytest.raises(ValidationError, match="does not match"):
            validate_submission(challenge, {"qrcode": {"scannedData": "event-2026"}})

    def test_quiz_records_score_and_attempt(self):
        challenge = _challenge("quiz", {"quiz": QUIZ})
        data = validate_submission(challenge, {"quiz": {"answers": [
            {"questionId": "q1", "answer": 1},
            {"questionId": "q2", "answer": 0},
        ]}}, attempt=2)
        assert data["quiz"]["score"] == 100
        assert data["quiz"]["passed"] is True
        assert data["quiz"]["attempt"] == 2

    def test_file_within_limits_accepted(self):
        challenge = _challenge("file", _file_config())
        data = validate_submission(challenge, {"file": {"files": [
            {"requirementId": "r1", "name": "me.PNG", "url": "https://files.test/a.png", "size": 1000},
        ]}})
        assert data["file"]["files"][0]["url"] == "https://files.test/a.png"

    def test_file_max_files_enforced(self):
        challenge = _challenge("file", _file_config(requirement={"allowMultiple": True}))
        with pytest.raises(ValidationError) as exc_info:
            validate_submission(challenge, {"file": {"files": [
                {"requirementId": "r1", "name": "a.png", "url": "https://files.test/a.png"},
                {"requirementId": "r1", "name": "b.png", "url": "https://files.test/b.png"},
            ]}})
        assert any("at most 1" in e["message"] for e in exc_info.value.errors)

    def test_single_item_requirement_enforced(self):
        challenge = _challenge("file", _file_config(maxFiles=3))
        with pytest.raises(ValidationError) as exc_info:
            validate_submission(challenge, {"file": {"files": [
                {"requirementId": "r1", "name": "a.png", "url": "https://files.test/a.png"},
                {"requirementId": "r1", "name": "b.png", "url": "https://files.test/b.png"},
            ]}})
        assert any("single item" in e["message"] for e in exc_info.value.errors)

    def test_file_category_rejects_other_extensions(self):
        challenge = _challenge("file", _file_config())
        with pytest.raises(ValidationError):
            validate_submission(challenge, {"file": {"files": [
                {"requirementId": "r1", "name": "notes.pdf", "url": "https://files.test/notes.pdf"},
            ]}})

    def test_accepted_types_override_category(self):
        challenge = _challenge("file", _file_config(requirement={"acceptedTypes": ["pdf"]}))
        validate_submission(challenge, {"file": {"files": [
            {"requirementId": "r1", "name": "notes.pdf", "url": "https://files.test/notes.pdf"},
        ]}})

    def test_size_limit(self):
        challenge = _challenge("file", _file_config(requirement={"maxSize": 100}))
        with pytest.raises(ValidationError):
            validate_submission(challenge, {"file": {"files": [
                {"requirementId": "r1", "name": "a.png", "url": "https://files.test/a.png", "size": 101},
            ]}})

    def test_unknown_requirement(self):
        challenge = _challenge("file", _file_config())
        with pytest.raises(ValidationError):
            validate_submission(challenge, {"file": {"files": [
                {"requirementId": "nope", "name": "a.png", "url": "https://files.test/a.png"},
            ]}})

    def test_link_requirement_needs_http_url(self):
        challenge = _challenge("file", _file_config(requirement={"submissionType": "link", "fileCategory": None}))
        validate_submission(challenge, {"file": {"files": [
            {"requirementId": "r1", "url": "https://example.com/post", "submissionType": "link"},
        ]}})
        with pytest.raises(ValidationError):
            validate_submission(challenge, {"file": {"files": [
                {"requirementId": "r1", "url": "ftp://example.com/post", "submissionType": "link"},
            ]}})

    def test_uploaded_files_must_belong_to_submitter(self):
        challenge = _challenge("file", _file_config())
        mine = "https://files.test/challenge-submissions/1/2/"
        owns = lambda url: url.startswith(mine)  # noqa: E731
        validate_submission(challenge, {"file": {"files": [
            {"requirementId": "r1", "name": "a.png", "url": f"{mine}a.png"},
        ]}}, owns_upload=owns)
        with pytest.raises(ValidationError) as exc_info:
            validate_submission(challenge, {"file": {"files": [
                {"requirementId": "r1", "name": "a.png", "url": "https://files.test/challenge-submissions/1/3/a.png"},
            ]}}, owns_upload=owns)
        assert exc_info.value.errors[0]["field"] == "file.files.0.url"

    def test_links_not_checked_for_ownership(self):
        challenge = _challenge("file", _file_config(requirement={"submissionType": "link", "fileCategory": None}))
        validate_submission(challenge, {"file": {"files": [
            {"requirementId": "r1", "url": "https://example.com/post", "submissionType": "link"},
        ]}}, owns_upload=lambda url: False)

    def test_submission_type_must_match_requirement(self):
        challenge = _challenge("file", _file_config())
        with pytest.raises(ValidationError):
            validate_submission(challenge, {"file": {"files": [
                {"requirementId": "r1", "url": "https://example.com/a.png", "submissionType": "link"},
            ]}})


class TestSubmittedFileUrls:
    """Only uploaded files are candidates for storage cleanup."""

    def test_links_excluded(self):
        data = {"file": {"files": [
            {"requirementId": "r1", "url": "https://files.test/a.png", "submissionType": "file"},
            {"requirementId": "r2", "url": "https://example.com/post", "submissionType": "link"},
        ]}}
        assert submitted_file_urls("file", data) == ["https://files.test/a.png"]

    def test_non_file_submissions_have_no_files(self):
        assert submitted_file_urls("text", {"text": {"content": "https://files.test/a.png"}}) == []
        assert submitted_file_urls("file", None) == []
