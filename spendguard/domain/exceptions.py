"""Domain-specific exceptions

Rule failures are never raised; they come back as a rejected ValidationResult.
Everything here is a precondition failure: the request itself could not be carried out.
"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class IntentNotFoundError(DomainException):
    """No intent with the given id"""

    pass


class EscrowNotFoundError(DomainException):
    """No escrow with the given id"""

    pass


class MilestoneNotFoundError(DomainException):
    """Escrow has no milestone with the given id"""

    pass


class MerchantNotFoundError(DomainException):
    """Merchant directory has no entry for the given id"""

    pass


class WalletNotFoundError(DomainException):
    """No balance record for the given user"""

    pass


class WalletExistsError(DomainException):
    """User already has a wallet"""

    pass


class MerchantDirectoryError(DomainException):
    """Merchant registry returned an error or is unavailable"""

    pass


class InvalidPolicyError(DomainException):
    """Policy fields are malformed (tier out of range, split not summing to 1, ...)"""

    pass


class InvalidAmountError(DomainException):
    """Amount is not a finite value representable to the cent"""

    pass


class InsufficientFundsError(DomainException):
    """Spendable balance cannot cover the amount to lock"""

    pass


class FundLockError(DomainException):
    """Balance lock and record creation could not be committed together"""

    pass


class IntentNotActiveError(DomainException):
    """Operation requires an active intent"""

    pass


class UsageInvariantError(DomainException):
    """Applying usage would drive the remaining balance negative"""

    pass


class MilestoneAlreadyCompletedError(DomainException):
    """Milestone has already been released"""

    pass


class ProofRequiredError(DomainException):
    """Milestone release needs a proof that was not supplied"""

    pass


class EscrowTerminalError(DomainException):
    """Escrow is released or clawed back and accepts no further operations"""

    pass


class InvalidClawbackError(DomainException):
    """Clawback amount is not within the pending balance"""

    pass
