"""
Exceptions and warnings raised by the model
"""


class ConfigurationError(ValueError):
    """Invalid or inconsistent parameters, detected before any simulation step runs"""


class UnrealizableTargetError(ValueError):
    """The target statistics cannot be reproduced on the declared population"""


class NumericDegeneracyWarning(UserWarning):
    """A probability had to be clamped or saturated at 0 or 1"""


class UnknownAttribute(KeyError):
    """An attribute that was never declared in the attribute store"""


class InactiveNode(KeyError):
    """The node departed from the population or was never allocated"""


class InvalidEdge(ValueError):
    """Self loops, duplicated edges or edges touching inactive nodes"""


class EdgeNotFound(KeyError):
    """Removing an edge that does not exist from a strict network"""


class TrialFailure(RuntimeError):
    """
    A single simulation trial could not complete. The exception travels between processes, so everything it carries
    must be picklable.

    :param message: description of what went wrong
    :param trial: index of the failing trial, if known
    :param partial: output recorded up to the failure (a pandas DataFrame), if any
    """
    def __init__(self, message, trial=None, partial=None):
        super().__init__(message)
        self.message = message
        self.trial = trial
        self.partial = partial

    def __reduce__(self):
        return self.__class__, (self.message, self.trial, self.partial)
