"""Validation gate run before a job is allowed to execute."""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from jobengine.lib.logger import configure_logger

logger = configure_logger(__name__)

REQUIRED_FIELDS = ("user_id", "target_id")

Validator = Callable[[Dict[str, Any]], Awaitable[Optional[str]]]


def missing_required_fields(input: Dict[str, Any]) -> List[str]:
    """Names of mandatory ownership fields that are absent or empty."""
    return [name for name in REQUIRED_FIELDS if not input.get(name)]


def has_required_fields(input: Dict[str, Any]) -> bool:
    return not missing_required_fields(input)


async def base_check(input: Dict[str, Any]) -> Optional[str]:
    missing = missing_required_fields(input)
    if missing:
        return f"Missing required job fields: {', '.join(missing)}"
    return None


def schema_check(schema: Type[BaseModel]) -> Validator:
    """Validator that checks the full merged input against a pydantic model."""

    async def check(input: Dict[str, Any]) -> Optional[str]:
        try:
            schema.model_validate(input)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            return f"Schema validation failed for {schema.__name__}: {problems}"
        return None

    return check


def job_check(job: Any) -> Validator:
    """Validator delegating to a job's own ``validate`` override."""

    async def check(input: Dict[str, Any]) -> Optional[str]:
        if not await job.validate(input):
            return f"Validation failed for job {job.name}"
        return None

    return check


@dataclass
class ValidationResult:
    valid: bool
    message: Optional[str] = None


@dataclass
class ValidationGate:
    """Runs validators in order; the base structural check always comes first."""

    validators: List[Validator] = field(default_factory=list)

    @classmethod
    def for_job(
        cls, job: Any, schema: Optional[Type[BaseModel]] = None
    ) -> "ValidationGate":
        validators: List[Validator] = []
        if schema is not None:
            validators.append(schema_check(schema))
        validators.append(job_check(job))
        return cls(validators=validators)

    async def check(self, input: Dict[str, Any]) -> ValidationResult:
        for validator in [base_check, *self.validators]:
            message = await validator(input)
            if message:
                logger.debug(
                    "Validation failed",
                    extra={"reason": message, "event_type": "validation_failed"},
                )
                return ValidationResult(valid=False, message=message)
        return ValidationResult(valid=True)
