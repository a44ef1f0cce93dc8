# Custom warnings used inside proxpd.


class ProxPDWarning(UserWarning):
    """
    Parent class of all warnings raised in proxpd.
    """


class PreconditionWarning(ProxPDWarning):
    """
    Use when a preconditioner entry had to be substituted (e.g. empty row/column of the linear operator).
    """
