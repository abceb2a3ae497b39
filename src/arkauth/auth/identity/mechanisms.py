"""MFA mechanism selection and out-of-band polling.

One challenge round of an identity login is resolved by two cooperating
parties:

* the :class:`OOBPoller` loop, which calls ``AdvanceAuthentication``
  either with an operator answer or with a ``Poll`` action every
  :data:`POLL_INTERVAL` seconds, until the server reports a terminal
  result, asks for the next round, rejects the login, or
  :data:`POLL_TIMEOUT` elapses;
* a :class:`Prompter` thread (interactive rounds only), which asks the
  operator for a code and posts it to the poller.

They exchange messages through two single-slot mailboxes: *answers*
(prompter to poller: an answer string, or an :class:`~arkauth.exceptions.InputError`)
and *feedback* (poller to prompter: :attr:`Feedback.CONTINUE` or
:attr:`Feedback.DONE`). Both watch a shared cancellation
:class:`threading.Event`; the poller sets the prompter's stop signal on
every exit path.

Example::

    poller = OOBPoller(identity.advance_authentication, interaction=ConsoleInteraction())
    outcome = poller.poll(mechanism, session_id, interactive=True)
    if outcome.status is PollStatus.AUTHENTICATED:
        ...
"""

from __future__ import annotations

import enum
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from arkauth.auth.identity.interaction import ConsoleInteraction, Interaction
from arkauth.auth.identity.schemas import (
    AdvanceAuthResponse,
    AdvanceAuthResult,
    AuthAction,
    Challenge,
    Mechanism,
)
from arkauth.exceptions import (
    ArkError,
    AuthCancelledError,
    AuthRejectedError,
    AuthTimeoutError,
    InputError,
    InteractionRequiredError,
    ProtocolError,
)
from arkauth.output import Logger

POLL_INTERVAL = 0.5
POLL_TIMEOUT = 360.0
PROMPT_PAUSE = 3.0
MAX_PROMPTS = 20

SUPPORTED_MECHANISMS = ("pf", "sms", "email", "otp", "oath", "up")

FACTORS: dict[str, str] = {
    "otp": "📲 Push / Code",
    "oath": "📲 Push / Code",
    "sms": "📟 SMS",
    "email": "📧 Email",
    "pf": "📞 Phone call",
    "up": "🔑 User Password",
}

PICK_MESSAGE = "Please pick one of the following MFA methods"

AdvanceFn = Callable[[str, str, AuthAction, str], AdvanceAuthResponse]
"""``(mechanism_id, session_id, action, answer) -> response``."""


# ---------------------------------------------------------------------- #
# Mechanism selection
# ---------------------------------------------------------------------- #


class MechanismSelector:
    """Chooses which mechanism of a challenge to answer.

    Args:
        interaction: Used to prompt when several mechanisms are offered.
        mfa_type: Preferred mechanism name (``"otp"``, ``"sms"``...). Updated
            to the operator's last choice.
    """

    def __init__(
        self,
        interaction: Optional[Interaction] = None,
        mfa_type: Optional[str] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._interaction = interaction or ConsoleInteraction()
        self.mfa_type = (mfa_type or "").lower()
        self._logger = logger or Logger("MechanismSelector")

    @staticmethod
    def supported(challenge: Challenge) -> list[Mechanism]:
        """Mechanisms of *challenge* this client can drive, in server order."""
        return [m for m in challenge.mechanisms if m.lower_name in SUPPORTED_MECHANISMS]

    def preferred(self, challenge: Challenge) -> Optional[Mechanism]:
        """The supported mechanism matching :attr:`mfa_type`, if offered."""
        if not self.mfa_type:
            return None
        for mechanism in self.supported(challenge):
            if mechanism.lower_name == self.mfa_type:
                return mechanism
        return None

    def pick(self, challenge: Challenge) -> Mechanism:
        """Prompt the operator for a mechanism, preselecting :attr:`mfa_type`.

        Raises:
            ProtocolError: If no offered mechanism is supported.
            InputError: If the prompt fails.
        """
        mechanisms = self._require_supported(challenge)
        names = [m.lower_name for m in mechanisms]
        default_index = names.index(self.mfa_type) if self.mfa_type in names else 0
        index = self._interaction.select(
            PICK_MESSAGE, [FACTORS[name] for name in names], default_index
        )
        chosen = mechanisms[index]
        self.mfa_type = chosen.lower_name
        self._logger.debug("Picked mechanism [%s]", chosen.name)
        return chosen

    def resolve(self, challenge: Challenge, interactive: bool) -> Mechanism:
        """Decide the mechanism of *challenge* without asking when possible.

        A lone supported mechanism is used as is. With several, interactive
        callers are prompted and non-interactive ones get :attr:`mfa_type`.

        Raises:
            ProtocolError: If no offered mechanism is supported.
            InteractionRequiredError: Non-interactive, several mechanisms,
                and none matches :attr:`mfa_type`.
        """
        mechanisms = self._require_supported(challenge)
        if len(mechanisms) == 1:
            return mechanisms[0]
        if interactive:
            return self.pick(challenge)
        preferred = self.preferred(challenge)
        if preferred is None:
            raise InteractionRequiredError(
                "User interaction is not supported while not interactive "
                f"and MFA type [{self.mfa_type or 'none'}] was not offered"
            )
        return preferred

    def _require_supported(self, challenge: Challenge) -> list[Mechanism]:
        mechanisms = self.supported(challenge)
        if not mechanisms:
            offered = ", ".join(m.name for m in challenge.mechanisms) or "none"
            raise ProtocolError(f"No supported MFA mechanism offered (got: {offered})")
        return mechanisms


# ---------------------------------------------------------------------- #
# Prompter
# ---------------------------------------------------------------------- #


class Feedback(str, enum.Enum):
    """Poller verdict on an answer."""

    CONTINUE = "CONTINUE"
    DONE = "DONE"


AnswerMessage = Union[str, ArkError]


def prompt_message(mechanism: Mechanism, oob_result: Optional[AdvanceAuthResult] = None) -> str:
    """Text shown to the operator while a round is pending."""
    if oob_result is not None and oob_result.generated_auth_value:
        return (
            "Sent Mobile Authenticator request to your device with a value of "
            f"[{oob_result.generated_auth_value}]. Please follow the instructions "
            "to proceed with authentication or enter verification code here"
        )
    return mechanism.prompt_mech_chosen or f"Enter the code for {FACTORS[mechanism.lower_name]}"


class Prompter:
    """Operator half of an OOB round, running on a daemon thread.

    Prompts, posts the answer, then waits up to *pause* seconds for the
    poller's verdict before prompting again. Gives up with an
    :class:`~arkauth.exceptions.InputError` on an empty answer or after
    *max_prompts* prompts.

    A prompt already shown cannot be withdrawn: after :meth:`stop` the
    thread exits as soon as that prompt returns, without posting. It is
    therefore stopped but not joined. With a console interaction the line
    that releases it is discarded, and a prompt of the next round waits
    for it (see :class:`~arkauth.auth.identity.interaction.ConsoleInteraction`).
    """

    def __init__(
        self,
        interaction: Interaction,
        message: str,
        answers: queue.Queue[AnswerMessage],
        feedback: queue.Queue[Feedback],
        cancel: threading.Event,
        max_prompts: int = MAX_PROMPTS,
        pause: float = PROMPT_PAUSE,
    ) -> None:
        self._interaction = interaction
        self._message = message
        self._answers = answers
        self._feedback = feedback
        self._cancel = cancel
        self._stop = threading.Event()
        self._max_prompts = max_prompts
        self._pause = pause
        self._thread = threading.Thread(target=self._run, name="ark-mfa-prompter", daemon=True)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set() or self._cancel.is_set()

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def _run(self) -> None:
        prompts = 0
        while not self.stopped:
            if prompts >= self._max_prompts:
                self._post(InputError(f"No accepted answer after {self._max_prompts} prompts"))
                return
            prompts += 1
            try:
                answer = self._interaction.secret(self._message)
            except ArkError as exc:
                self._post(exc)
                return
            if self.stopped:
                return
            if not answer:
                self._post(InputError("Empty response by user"))
                return
            if not self._post(answer):
                return
            try:
                verdict = self._feedback.get(timeout=self._pause)
            except queue.Empty:
                continue
            if verdict is not Feedback.CONTINUE:
                return

    def _post(self, message: AnswerMessage) -> bool:
        while not self.stopped:
            try:
                self._answers.put(message, timeout=POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False


# ---------------------------------------------------------------------- #
# Poller
# ---------------------------------------------------------------------- #


class PollStatus(str, enum.Enum):
    AUTHENTICATED = "authenticated"
    NEXT_ROUND = "next_round"


@dataclass
class PollOutcome:
    """How a round ended. ``result`` is set when authenticated."""

    status: PollStatus
    result: Optional[AdvanceAuthResult] = None


class OOBPoller:
    """Drives one out-of-band challenge round to completion.

    Args:
        advance: Sends ``AdvanceAuthentication``.
        interaction: Prompts for interactive rounds.
        poll_interval: Seconds between ``Poll`` calls.
        timeout: Round budget in seconds, measured with *clock*.
        prompt_pause: Seconds the prompter waits for a verdict.
        max_prompts: Prompt budget of the prompter.
        clock: Monotonic clock.
        sleep: Waits between polls on non-interactive rounds.
    """

    def __init__(
        self,
        advance: AdvanceFn,
        interaction: Optional[Interaction] = None,
        logger: Optional[Logger] = None,
        poll_interval: float = POLL_INTERVAL,
        timeout: float = POLL_TIMEOUT,
        prompt_pause: float = PROMPT_PAUSE,
        max_prompts: int = MAX_PROMPTS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._advance = advance
        self._interaction = interaction or ConsoleInteraction()
        self._logger = logger or Logger("OOBPoller")
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._prompt_pause = prompt_pause
        self._max_prompts = max_prompts
        self._clock = clock
        self._sleep = sleep

    def poll(
        self,
        mechanism: Mechanism,
        session_id: str,
        interactive: bool,
        cancel: Optional[threading.Event] = None,
        oob_result: Optional[AdvanceAuthResult] = None,
    ) -> PollOutcome:
        """Run the round until it is decided.

        Args:
            mechanism: Mechanism the round was started with.
            session_id: Identity login session.
            interactive: Start a :class:`Prompter` next to the poll loop.
            cancel: Set by the caller to abort the round.
            oob_result: Response of ``StartOOB``, for the prompt text.

        Returns:
            :class:`PollOutcome` with the terminal result, or
            :attr:`PollStatus.NEXT_ROUND` on ``NewPackage``.

        Raises:
            AuthTimeoutError: The round outlived its budget.
            AuthRejectedError: The server failed an answer or poll.
            InputError: The operator gave an empty answer or ran out of prompts.
            AuthCancelledError: *cancel* was set.
        """
        cancel = cancel or threading.Event()
        answers: queue.Queue[AnswerMessage] = queue.Queue(maxsize=1)
        feedback: queue.Queue[Feedback] = queue.Queue(maxsize=1)
        prompter: Optional[Prompter] = None
        if interactive:
            prompter = Prompter(
                self._interaction,
                prompt_message(mechanism, oob_result),
                answers,
                feedback,
                cancel,
                max_prompts=self._max_prompts,
                pause=self._prompt_pause,
            )
            prompter.start()
        try:
            return self._loop(mechanism, session_id, answers, feedback, interactive, cancel)
        finally:
            if prompter is not None:
                prompter.stop()

    def _loop(
        self,
        mechanism: Mechanism,
        session_id: str,
        answers: queue.Queue[AnswerMessage],
        feedback: queue.Queue[Feedback],
        interactive: bool,
        cancel: threading.Event,
    ) -> PollOutcome:
        deadline = self._clock() + self._timeout
        while True:
            if cancel.is_set():
                raise AuthCancelledError("Authentication was cancelled")
            if self._clock() >= deadline:
                raise AuthTimeoutError(
                    f"Timeout reached after {self._timeout:g}s while polling for user answer"
                )

            answer = self._next_answer(answers, interactive)
            if isinstance(answer, ArkError):
                raise answer
            if answer is None:
                response = self._advance(mechanism.mechanism_id, session_id, AuthAction.POLL, "")
            else:
                response = self._advance(mechanism.mechanism_id, session_id, AuthAction.ANSWER, answer)
            if not response.success:
                raise AuthRejectedError(
                    f"Failed to advance authentication: {response.describe_failure()}"
                )

            outcome = self._evaluate(response.result)
            if answer is not None:
                self._reply(feedback, Feedback.CONTINUE if outcome is None else Feedback.DONE)
            if outcome is not None:
                return outcome

    def _next_answer(
        self, answers: queue.Queue[AnswerMessage], interactive: bool
    ) -> Optional[AnswerMessage]:
        if not interactive:
            self._sleep(self._poll_interval)
            return None
        try:
            return answers.get(timeout=self._poll_interval)
        except queue.Empty:
            return None

    def _evaluate(self, result: AdvanceAuthResult) -> Optional[PollOutcome]:
        if result.is_login_success:
            return PollOutcome(PollStatus.AUTHENTICATED, result)
        if result.is_new_package:
            self._logger.debug("Server asked for the next challenge round")
            return PollOutcome(PollStatus.NEXT_ROUND)
        return None

    def _reply(self, feedback: queue.Queue[Feedback], verdict: Feedback) -> None:
        try:
            feedback.put_nowait(verdict)
        except queue.Full:
            self._logger.debug("Prompter has not read the previous verdict, dropping [%s]", verdict.value)
