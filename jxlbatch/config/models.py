from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator

DEFAULT_EXTENSION = ".jxl"
TRUE_VALUE = "1"
DISABLE_OUTPUT_FLAG = "disable_output"
JPEG_TRANSCODE_KEY = "-j"

# Formats the reference encoders accept as input
DEFAULT_INPUT_EXTENSIONS = [
    ".png", ".apng", ".gif", ".jpg", ".jpeg", ".jfif", ".ppm", ".pfm", ".pgx", ".jxl",
]


def normalize_extension(extension: Optional[str]) -> str:
    """Returns the extension with exactly one leading dot (``.jxl`` when empty)."""
    extension = (extension or "").strip()
    if not extension:
        return DEFAULT_EXTENSION
    return "." + extension.lstrip(".")


class ConversionPolicy(BaseModel):
    """Per-run behaviour derived from the flat option map."""
    overwrite: bool = False
    silent: bool = False
    extension: str = DEFAULT_EXTENSION
    timeout_seconds: int = Field(default=0, ge=0)
    stop_on_error: bool = False
    copy_on_error: bool = False
    multithreaded: bool = False
    keep_date_time: bool = False
    process_non_ascii: bool = False
    jpeg_transcode: bool = False
    disable_output: bool = False
    suffix_template: str = ""
    custom_args: List[str] = Field(default_factory=list)
    directory_input: Optional[str] = None

    @field_validator("extension")
    @classmethod
    def validate_extension(cls, v: str) -> str:
        return normalize_extension(v)

    @classmethod
    def from_options(cls, options: Dict[str, str]) -> "ConversionPolicy":
        def flag(key: str) -> bool:
            return options.get(key, "") == TRUE_VALUE

        custom_flags = options.get("customFlags", "")
        timeout = options.get("globalTimeout", "").strip() or 0
        return cls(
            overwrite=flag("overwrite"),
            silent=flag("silent"),
            extension=options.get("outFormat", DEFAULT_EXTENSION),
            timeout_seconds=timeout,
            stop_on_error=flag("globalStopOnError"),
            copy_on_error=flag("globalCopyOnError"),
            multithreaded=flag("useMultithread"),
            keep_date_time=flag("keepDateTime"),
            process_non_ascii=flag("processNonAscii"),
            jpeg_transcode=flag(JPEG_TRANSCODE_KEY),
            disable_output=DISABLE_OUTPUT_FLAG in custom_flags,
            suffix_template=options.get("outSuffix", ""),
            custom_args=custom_flags.split(),
            directory_input=options.get("directoryInput") or None,
        )


class GeneralConfig(BaseModel):
    threads: int = Field(default=1, gt=0)
    recursive: bool = False
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_INPUT_EXTENSIONS))
    log_path: Optional[str] = None
    debug: bool = False

    @field_validator("extensions")
    @classmethod
    def validate_extensions(cls, v: List[str]) -> List[str]:
        return [normalize_extension(ext).lower() for ext in v if ext and ext.strip()]


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    binary: Optional[str] = None
    output_dir: Optional[str] = None
    options: Dict[str, str] = Field(default_factory=dict)

    @field_validator("options", mode="before")
    @classmethod
    def stringify_options(cls, v):
        # YAML turns "1" into an int and bare keys into None
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("options must be a mapping of option name to value")
        return {str(key): "" if value is None else str(value) for key, value in v.items()}
