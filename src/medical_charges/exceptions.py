class ChargesModelError(ValueError):
    """Base class for data and fitting failures in the charges report."""


class InvalidFraction(ChargesModelError):
    pass


class EmptyDataset(ChargesModelError):
    pass


class UnknownCategoryLevel(ChargesModelError):
    pass


class InsufficientData(ChargesModelError):
    pass


class NonPositiveResponse(ChargesModelError):
    pass


class SingularDesignMatrix(ChargesModelError):
    pass
