class TransformationFailure(Exception):
    """Raised when a transformation cannot complete.

    Expression evaluation failures surface as this type (or a subclass) and
    propagate through every instruction unchanged.
    """

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code or message

    def __repr__(self):
        return f"{type(self).__name__}({self.code!r})"

    def __str__(self):
        if self.message != self.code:
            return f"{self.code} - {self.message}"
        return self.message


class ExpressionError(TransformationFailure):
    """Expression failed to compile or to evaluate."""


class TerminateError(TransformationFailure):
    """A message instruction asked the transformation to stop."""
