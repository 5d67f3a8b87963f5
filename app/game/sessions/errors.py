class GameSessionError(Exception):
    pass


class SessionNotFoundError(GameSessionError):
    pass


class JoinCodeNotFoundError(GameSessionError):
    pass


class JoinCodeGenerationError(GameSessionError):
    pass


class SessionNotJoinableError(GameSessionError):
    pass


class SessionFullError(GameSessionError):
    pass


class InvalidDisplayNameError(GameSessionError):
    pass


class InvalidPhaseTransitionError(GameSessionError):
    pass


class NotEnoughParticipantsError(GameSessionError):
    pass


class ParticipantNotFoundError(GameSessionError):
    pass


class ParticipantRemovedError(GameSessionError):
    pass


class ParticipantNotPlayingError(GameSessionError):
    pass


class UnsupportedActionError(GameSessionError):
    pass


class InvalidAnswerOptionError(GameSessionError):
    pass


class InvalidCardCellError(GameSessionError):
    pass


class ChallengeAnswerRequiredError(GameSessionError):
    pass


class ProgressSyncError(GameSessionError):
    pass


class SessionNotCompletedError(GameSessionError):
    pass


class StaleProgressError(GameSessionError):
    pass
