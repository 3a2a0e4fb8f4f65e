from pydantic import BaseModel, model_validator

from shared.helper.HelperConfig import HelperConfig
from shared.models.theme import SelectionPolicy


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required for a client.

    Attributes:
        env_key (str): The raw key of the environment variable, without the client prefix.
        val_type (str): The expected type of the value ("string", "number", "bool", "list").
        default (str | int | float | bool | list | None): Default if the variable is not set. If None, the variable is required.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None


class ChunkerOptions(BaseModel, frozen=True):
    """Segmentation parameters, all sizes in estimated tokens."""

    single_chunk_threshold: int = 1000
    target_size: int = 750
    overlap_size: int = 100
    min_size: int = 300
    max_size: int = 1500
    chars_per_token: int = 4

    @model_validator(mode="after")
    def _check_sizes(self) -> "ChunkerOptions":
        if self.chars_per_token < 1:
            raise ValueError("chars_per_token must be >= 1")
        if not 0 <= self.overlap_size < self.min_size:
            raise ValueError("overlap_size must be >= 0 and smaller than min_size")
        if self.min_size > self.target_size:
            raise ValueError("min_size must not exceed target_size")
        if self.target_size + self.overlap_size > self.max_size:
            raise ValueError("target_size + overlap_size must not exceed max_size")
        if self.min_size > self.single_chunk_threshold:
            raise ValueError("min_size must not exceed single_chunk_threshold")
        return self

    @classmethod
    def from_config(cls, helper_config: HelperConfig) -> "ChunkerOptions":
        defaults = cls()
        return cls(
            single_chunk_threshold=helper_config.get_int_val("CHUNK_SINGLE_THRESHOLD", default=defaults.single_chunk_threshold),
            target_size=helper_config.get_int_val("CHUNK_TARGET_SIZE", default=defaults.target_size),
            overlap_size=helper_config.get_int_val("CHUNK_OVERLAP_SIZE", default=defaults.overlap_size),
            min_size=helper_config.get_int_val("CHUNK_MIN_SIZE", default=defaults.min_size),
            max_size=helper_config.get_int_val("CHUNK_MAX_SIZE", default=defaults.max_size),
            chars_per_token=helper_config.get_int_val("CHUNK_CHARS_PER_TOKEN", default=defaults.chars_per_token),
        )


class TaggerSettings(BaseModel, frozen=True):
    """Theme selection policy, chosen per deployment."""

    policy: SelectionPolicy = SelectionPolicy.TOP_N
    top_n: int = 10
    threshold: float = 0.28
    max_links: int = 25
    clamp_negative: bool = False

    @model_validator(mode="after")
    def _check_policy(self) -> "TaggerSettings":
        if self.top_n < 1:
            raise ValueError("top_n must be >= 1")
        if self.max_links < 1:
            raise ValueError("max_links must be >= 1")
        if not -1.0 <= self.threshold <= 1.0:
            raise ValueError("threshold must be a cosine value in [-1, 1]")
        return self

    @classmethod
    def from_config(cls, helper_config: HelperConfig) -> "TaggerSettings":
        defaults = cls()
        return cls(
            policy=SelectionPolicy(helper_config.get_string_val("THEME_POLICY", default=defaults.policy.value).lower()),
            top_n=helper_config.get_int_val("THEME_TOP_N", default=defaults.top_n),
            threshold=helper_config.get_float_val("THEME_THRESHOLD", default=defaults.threshold),
            max_links=helper_config.get_int_val("THEME_MAX_LINKS", default=defaults.max_links),
            clamp_negative=helper_config.get_bool_val("THEME_CLAMP_NEGATIVE", default=defaults.clamp_negative),
        )


class WorkerSettings(BaseModel, frozen=True):
    """Polling, retry and timeout settings of the worker pool, durations in seconds."""

    worker_count: int = 2
    poll_interval: float = 5.0
    sweep_interval: float = 300.0
    stale_timeout: float = 1800.0
    job_timeout: float = 600.0
    max_attempts: int = 3
    backoff_base: float = 60.0
    backoff_max: float = 3600.0
    min_text_length: int = 40

    @model_validator(mode="after")
    def _check_timings(self) -> "WorkerSettings":
        if self.worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.poll_interval <= 0 or self.sweep_interval <= 0:
            raise ValueError("poll_interval and sweep_interval must be > 0")
        # a job still running in this process must not look stale
        if self.job_timeout >= self.stale_timeout:
            raise ValueError("job_timeout must be smaller than stale_timeout")
        return self

    @classmethod
    def from_config(cls, helper_config: HelperConfig) -> "WorkerSettings":
        defaults = cls()
        return cls(
            worker_count=helper_config.get_int_val("WORKER_COUNT", default=defaults.worker_count),
            poll_interval=helper_config.get_float_val("WORKER_POLL_INTERVAL", default=defaults.poll_interval),
            sweep_interval=helper_config.get_float_val("WORKER_SWEEP_INTERVAL", default=defaults.sweep_interval),
            stale_timeout=helper_config.get_float_val("WORKER_STALE_TIMEOUT", default=defaults.stale_timeout),
            job_timeout=helper_config.get_float_val("WORKER_JOB_TIMEOUT", default=defaults.job_timeout),
            max_attempts=helper_config.get_int_val("JOB_MAX_ATTEMPTS", default=defaults.max_attempts),
            backoff_base=helper_config.get_float_val("JOB_BACKOFF_BASE", default=defaults.backoff_base),
            backoff_max=helper_config.get_float_val("JOB_BACKOFF_MAX", default=defaults.backoff_max),
            min_text_length=helper_config.get_int_val("JOB_MIN_TEXT_LENGTH", default=defaults.min_text_length),
        )
