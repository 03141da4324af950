"""Pydantic request/response models for gamification endpoints.

Wire format is camelCase, matching the portal front-end.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

EvaluationType = Literal["none", "quiz", "text", "file", "qrcode"]
ChallengeType = Literal["periodic", "annual"]
SubmissionStatus = Literal["pending", "approved", "rejected"]
RankingWindow = Literal["all", "cycle", "annual"]

DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ── Evaluation configuration (one variant per modality) ──


class QuizQuestion(CamelModel):
    id: str
    question: str = Field(min_length=1)
    options: list[str] = Field(min_length=2)
    correct_answer: int = Field(ge=0)

    @model_validator(mode="after")
    def _answer_in_range(self) -> QuizQuestion:
        if self.correct_answer >= len(self.options):
            raise ValueError(f"correctAnswer {self.correct_answer} out of range for question {self.id}")
        return self


class QuizConfig(CamelModel):
    questions: list[QuizQuestion] = Field(min_length=1)
    min_score: int = Field(70, ge=0, le=100)
    allow_multiple_attempts: bool = False
    max_attempts: int = Field(1, ge=1)
    score_reduction_per_attempt: int = Field(0, ge=0, le=100)


class TextConfig(CamelModel):
    placeholder: str = ""
    max_length: int = Field(1000, ge=1)


class FileRequirement(CamelModel):
    id: str
    name: str = Field(min_length=1)
    description: str = ""
    points: int = Field(ge=0)
    accepted_types: list[str] = Field(default_factory=list)
    file_category: str | None = None
    max_size: int = Field(DEFAULT_MAX_FILE_SIZE, ge=1)
    submission_type: Literal["file", "link"] = "file"
    allow_multiple: bool = False

    @field_validator("accepted_types")
    @classmethod
    def _normalize_extensions(cls, value: list[str]) -> list[str]:
        return [ext.strip().lower().lstrip(".") for ext in value if ext.strip()]


class FileConfig(CamelModel):
    file_requirements: list[FileRequirement] = Field(min_length=1)
    max_files: int = Field(1, ge=1)

    @model_validator(mode="after")
    def _unique_requirement_ids(self) -> FileConfig:
        ids = [r.id for r in self.file_requirements]
        if len(ids) != len(set(ids)):
            raise ValueError("fileRequirements ids must be unique")
        return self


class QrCodeConfig(CamelModel):
    qr_code_data: str = Field(min_length=1)
    qr_code_image: str = ""
    instructions: str = ""


class EvaluationConfig(CamelModel):
    """Evaluation blocks keyed by modality; only the block matching evaluationType is kept."""

    quiz: QuizConfig | None = None
    text: TextConfig | None = None
    file: FileConfig | None = None
    qrcode: QrCodeConfig | None = None


# ── Submission payloads (one variant per modality) ──


class QuizAnswer(CamelModel):
    question_id: str
    answer: int = Field(ge=0)


class QuizSubmission(CamelModel):
    answers: list[QuizAnswer]


class TextSubmission(CamelModel):
    content: str


class FileItem(CamelModel):
    requirement_id: str
    name: str = ""
    url: str = Field(min_length=1)
    size: int | None = Field(None, ge=0)
    type: str | None = None
    submission_type: Literal["file", "link"] = "file"


class FileSubmission(CamelModel):
    files: list[FileItem] = Field(min_length=1)


class QrCodeSubmission(CamelModel):
    scanned_data: str


class SubmissionPayload(CamelModel):
    quiz: QuizSubmission | None = None
    text: TextSubmission | None = None
    file: FileSubmission | None = None
    qrcode: QrCodeSubmission | None = None


# ── Settings ──


class GamificationSettingsUpdate(CamelModel):
    cycle_start_date: datetime | None = None
    cycle_end_date: datetime | None = None
    annual_start_date: datetime | None = None
    annual_end_date: datetime | None = None
    general_category_id: int | None = None
    enabled_category_ids: list[int] = Field(default_factory=list)


class GamificationSettingsResponse(CamelModel):
    id: int
    cycle_start_date: datetime | None
    cycle_end_date: datetime | None
    annual_start_date: datetime | None
    annual_end_date: datetime | None
    general_category_id: int | None
    enabled_category_ids: list[int]
    updated_at: datetime


class CategoryResponse(CamelModel):
    id: int
    name: str
    description: str | None = None
    color: str | None = None
    is_active: bool


# ── Points ledger ──


class PointsGrantRequest(CamelModel):
    user_id: int
    points: int
    description: str = Field(min_length=1, max_length=512)
    type: str = Field("manual", min_length=1, max_length=32)

    @field_validator("points")
    @classmethod
    def _non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("points must be non-zero")
        return value


class PointsEntryResponse(CamelModel):
    id: int
    user_id: int
    points: int
    description: str
    type: str
    source_type: str | None = None
    source_id: int | None = None
    created_by: int | None = None
    created_at: datetime


class PointsHistoryEntry(CamelModel):
    id: int
    points: int
    description: str
    type: str
    created_at: datetime
    created_by: str | None = None


class PointsExtractResponse(CamelModel):
    total_points: int
    history: list[PointsHistoryEntry]


class AdminPointsEntry(CamelModel):
    id: int
    points: int
    description: str
    type: str
    created_at: datetime
    user_id: int
    user_name: str
    user_email: str | None = None
    created_by: str | None = None


class SuccessResponse(BaseModel):
    success: bool = True


# ── Ranking ──


class RankingEntry(CamelModel):
    user_id: int
    user_name: str
    user_email: str | None = None
    photo_url: str | None = None
    total_points: int
    position: int
    category_id: int | None = None
    category_name: str | None = None


# ── Challenges ──


class ChallengeCreate(CamelModel):
    title: str = Field(min_length=1, max_length=256)
    description: str = ""
    detailed_description: str | None = None
    image_url: str | None = None
    points: int = Field(0, ge=0)
    start_date: datetime
    end_date: datetime
    type: ChallengeType = "periodic"
    is_active: bool = True
    evaluation_type: EvaluationType = "none"
    evaluation_config: EvaluationConfig | None = None
    target_user_categories: list[int] = Field(default_factory=list)
    display_order: int | None = None


class ChallengeUpdate(CamelModel):
    title: str | None = Field(None, min_length=1, max_length=256)
    description: str | None = None
    detailed_description: str | None = None
    image_url: str | None = None
    points: int | None = Field(None, ge=0)
    start_date: datetime | None = None
    end_date: datetime | None = None
    type: ChallengeType | None = None
    is_active: bool | None = None
    evaluation_type: EvaluationType | None = None
    evaluation_config: EvaluationConfig | None = None
    target_user_categories: list[int] | None = None
    display_order: int | None = None


class ChallengeResponse(CamelModel):
    id: int
    title: str
    description: str
    detailed_description: str | None = None
    image_url: str | None = None
    points: int
    start_date: datetime
    end_date: datetime
    type: str
    is_active: bool
    evaluation_type: str
    evaluation_config: dict[str, Any] | None = None
    target_user_categories: list[int]
    display_order: int
    created_by: int | None = None
    creator_name: str | None = None
    created_at: datetime
    updated_at: datetime


class ReorderRequest(CamelModel):
    challenge_ids: list[int] = Field(min_length=1)


class SubmissionCountResponse(CamelModel):
    submission_count: int
    challenge_title: str


class DeletionConfirmationResponse(CamelModel):
    requires_confirmation: bool = True
    submission_count: int
    challenge_title: str
    message: str


class RetractionSummaryResponse(CamelModel):
    success: bool = True
    challenge_deleted: bool
    submissions_removed: int
    points_retracted: int
    comments_removed: int
    files_deleted: int
    file_deletion_failures: int
    message: str


# ── Submissions ──


class SubmitRequest(CamelModel):
    submission_data: SubmissionPayload = Field(default_factory=SubmissionPayload)


class ReviewRequest(CamelModel):
    status: Literal["approved", "rejected"]
    admin_feedback: str | None = None


class UploadedFileResponse(CamelModel):
    requirement_id: str
    name: str
    url: str
    size: int
    type: str | None = None


class RequirementReview(CamelModel):
    requirement_id: str
    status: SubmissionStatus
    feedback: str = ""


class GranularReviewRequest(CamelModel):
    requirement_reviews: list[RequirementReview]
    admin_feedback: str | None = None


class SubmissionResponse(CamelModel):
    id: int
    challenge_id: int
    user_id: int
    status: str
    submission_type: str
    submission_data: dict[str, Any]
    points: int
    admin_feedback: str | None = None
    attempt_count: int
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    user_name: str | None = None
    challenge_title: str | None = None


# ── Comments ──


class CommentCreate(CamelModel):
    content: str = Field(min_length=1, max_length=5000)
    parent_id: int | None = None

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value.strip()


class CommentResponse(CamelModel):
    id: int
    challenge_id: int
    user_id: int
    content: str
    parent_id: int | None = None
    created_at: datetime
    updated_at: datetime
    user_name: str
    user_photo_url: str | None = None
    like_count: int = 0
    is_liked_by_user: bool = False
    replies: list[CommentResponse] = Field(default_factory=list)


class LikeToggleResponse(CamelModel):
    liked: bool
    like_count: int
