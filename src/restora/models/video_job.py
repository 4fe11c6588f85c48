"""VideoJob entity - long-running animation request with lifecycle status tracking."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from restora.models.state import InvalidStateTransition


class VideoJobStatus(str, Enum):
    """Video job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        VideoJobStatus.SUCCEEDED,
        VideoJobStatus.FAILED,
        VideoJobStatus.CANCELED,
        VideoJobStatus.TIMED_OUT,
    }
)


class VideoJob(BaseModel):
    """One provider-side video generation job.

    Transitions happen exclusively through polling; once the job leaves
    PENDING it never returns to it, and terminal states are final.
    """

    handle: str
    provider: str
    status: VideoJobStatus = VideoJobStatus.PENDING
    output_url: str | None = None
    output_data: bytes | None = Field(default=None, repr=False)
    output_mime_type: str = "video/mp4"
    error: str | None = None
    poll_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def has_output(self) -> bool:
        return self.output_url is not None or self.output_data is not None

    def mark_processing(self) -> None:
        """Transition from pending (or processing) to processing.

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_not_terminal("processing")
        self.status = VideoJobStatus.PROCESSING

    def mark_succeeded(
        self, output_url: str | None = None, output_data: bytes | None = None
    ) -> None:
        """Transition to succeeded with a playable output reference.

        Raises:
            InvalidStateTransition: If the job is already terminal
            ValueError: If neither an output URL nor output bytes are provided
        """
        self._ensure_not_terminal("succeeded")
        if output_url is None and output_data is None:
            raise ValueError("A succeeded video job requires an output reference")
        self.output_url = output_url
        self.output_data = output_data
        self.status = VideoJobStatus.SUCCEEDED

    def mark_failed(self, error: str) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_not_terminal("failed")
        self.error = error
        self.status = VideoJobStatus.FAILED

    def mark_canceled(self, reason: str | None = None) -> None:
        """Transition from any non-terminal state to canceled.

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_not_terminal("canceled")
        self.error = reason
        self.status = VideoJobStatus.CANCELED

    def mark_timed_out(self, error: str) -> None:
        """Transition from any non-terminal state to timed_out.

        Raises:
            InvalidStateTransition: If the job is already terminal
        """
        self._ensure_not_terminal("timed_out")
        self.error = error
        self.status = VideoJobStatus.TIMED_OUT

    def apply(self, observed: "VideoJob") -> None:
        """Apply a status observed by polling the provider.

        A PENDING observation after the job started processing is ignored.
        """
        if observed.status == VideoJobStatus.PENDING:
            return
        if observed.status == VideoJobStatus.PROCESSING:
            self.mark_processing()
        elif observed.status == VideoJobStatus.SUCCEEDED:
            self.mark_succeeded(output_url=observed.output_url, output_data=observed.output_data)
            self.output_mime_type = observed.output_mime_type
        elif observed.status == VideoJobStatus.FAILED:
            self.mark_failed(observed.error or "Video generation failed")
        elif observed.status == VideoJobStatus.CANCELED:
            self.mark_canceled(observed.error or "Video generation was canceled")
        elif observed.status == VideoJobStatus.TIMED_OUT:
            self.mark_timed_out(observed.error or "Video generation timed out")

    def _ensure_not_terminal(self, target: str) -> None:
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark {target} from terminal state {self.status.value}."
            )
