"""Error types raised by the sail operator."""

from typing import Optional


class SailOperatorError(Exception):
    """Base class for all operator errors."""

    prefix = ""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        super().__init__(f"{self.prefix}{message}")
        if cause is not None:
            self.__cause__ = cause


class ValidationError(SailOperatorError):
    """The resource is invalid; retrying without a spec change will not help."""

    prefix = "validation error: "


class TransientError(SailOperatorError):
    """A temporary condition that is expected to resolve on its own."""

    prefix = "transient error: "


class NameAlreadyExistsError(SailOperatorError):
    """An IstioRevision and an IstioRevisionTag share a name and this one lost."""


class ReferenceNotFoundError(SailOperatorError):
    """A resource referenced by a tag does not exist."""


class NotFoundError(SailOperatorError):
    """The requested object does not exist in the store."""

    def __init__(self, kind: str, name: str, namespace: Optional[str] = None):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        key = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {key} not found")


class StoreError(SailOperatorError):
    """The store could not serve a request."""

    # HTTP status of the failed API call, when there was one
    status: Optional[int] = None


class InstallerError(SailOperatorError):
    """Installing or uninstalling a chart failed."""


class ConditionTranslationError(Exception):
    """
    A revision condition type or reason has no counterpart on Istio.

    This is a programming error and is never handled by the reconcilers.
    """


class MultiError(SailOperatorError):
    """Several independent errors reported together."""

    def __init__(self, errors: list[BaseException]):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))


class ErrorList:
    """Collects errors from sibling computations that must all run."""

    def __init__(self):
        self._errors: list[BaseException] = []

    def add(self, err: Optional[BaseException]) -> None:
        if err is not None:
            self._errors.append(err)

    def __len__(self) -> int:
        return len(self._errors)

    def error(self) -> Optional[BaseException]:
        """
        Return the collected errors as a single error.

        Returns:
            None if nothing was collected, the error itself if there is only
            one, otherwise a MultiError
        """
        if not self._errors:
            return None
        if len(self._errors) == 1:
            return self._errors[0]
        return MultiError(self._errors)


def find_error(err: Optional[BaseException], error_type: type) -> Optional[BaseException]:
    """
    Search an error, the errors it joins and its causes for an error type.

    Returns:
        The first matching error, or None
    """
    if err is None:
        return None
    if isinstance(err, error_type):
        return err
    if isinstance(err, MultiError):
        for inner in err.errors:
            found = find_error(inner, error_type)
            if found is not None:
                return found
    return find_error(err.__cause__, error_type)


def is_validation_error(err: BaseException) -> bool:
    return find_error(err, ValidationError) is not None


def is_transient_error(err: BaseException) -> bool:
    return find_error(err, TransientError) is not None
