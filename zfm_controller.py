"""
This module provides the multi-step fingerprint workflows (enrollment,
search, deletion and image download) on top of a ZFM sensor session.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from zfm_fingerprint import (
    ZFM,
    CharBuffer,
    FingerprintError,
    FingerprintImage,
    PreconditionError,
    ValidationError,
    make_logger,
)


class FingerWaitTimeout(FingerprintError, TimeoutError):
    """No finger was detected within the allowed number of polls."""


class EnrollmentError(FingerprintError):
    pass


class EnrollmentState(Enum):
    IDLE = "idle"
    AWAIT_FIRST_CAPTURE = "await_first_capture"
    CAPTURED_1 = "captured_1"
    CHECK_EXISTING = "check_existing"
    AWAIT_SECOND_CAPTURE = "await_second_capture"
    CAPTURED_2 = "captured_2"
    COMPARE = "compare"
    STORED = "stored"


@dataclass
class StorageUsage:
    used: int
    total: int


class FingerprintController:
    def __init__(
        self,
        sensor: ZFM,
        notify: Callable[[str], None] | None = None,
        poll_attempts: int | None = None,
        poll_interval: float = 0.0,
        remove_finger_delay: float = 2.0,
    ) -> None:
        """
        Initialize the object.

        Parameters:
            sensor: The sensor session. The controller owns it from now on.
            notify: Called with user instructions ("Remove finger..." etc).
                Defaults to logging them.
            poll_attempts: How often to poll for a finger before giving up.
                None polls until a finger is present.
            poll_interval: Seconds to sleep between two polls.
            remove_finger_delay: Seconds the user gets to lift the finger
                between the two enrollment captures.
        """

        if poll_attempts is not None and poll_attempts < 1:
            raise ValidationError("Number of poll attempts must be at least 1")

        self.sensor = sensor
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.remove_finger_delay = remove_finger_delay
        self.enrollment_state = EnrollmentState.IDLE
        self._initialised = False

        self.logger = make_logger(self.__class__.__name__)
        self.notify = notify if notify is not None else self.logger.info

    @property
    def initialised(self) -> bool:
        return self._initialised

    def initialise(self) -> None:
        """
        Open the serial communication if needed and verify the password.
        """

        if self._initialised:
            raise PreconditionError("Fingerprint sensor has already been initialised")

        if self.sensor.comm is None and not self.sensor.init_comm():
            raise FingerprintError(
                f"Could not open the fingerprint sensor on {self.sensor.port}"
            )

        if not self.sensor.verify_password():
            raise FingerprintError("The given fingerprint sensor password is wrong")

        self._initialised = True
        self.logger.info("Fingerprint sensor initialised")

    def close(self) -> None:
        self.sensor.close_comm()
        self._initialised = False

    def _require_initialised(self) -> None:
        if not self._initialised:
            raise PreconditionError("Fingerprint sensor not initialised")

    def _set_state(self, state: EnrollmentState) -> None:
        self.logger.debug(f"Enrollment state: {self.enrollment_state.value} -> {state.value}")
        self.enrollment_state = state

    def _wait_for_finger(self) -> None:
        attempts = 0
        while not self.sensor.read_image():
            attempts += 1
            if self.poll_attempts is not None and attempts >= self.poll_attempts:
                raise FingerWaitTimeout(f"No finger detected after {attempts} attempts")
            if self.poll_interval:
                time.sleep(self.poll_interval)

    def get_storage_usage(self) -> StorageUsage:
        """
        Get how many template positions are in use.

        Returns:
            StorageUsage: The used and the total number of positions.
        """

        self._require_initialised()

        return StorageUsage(
            used=self.sensor.get_template_count(),
            total=self.sensor.get_storage_capacity(),
        )

    def enroll_fingerprint(self) -> int:
        """
        Enroll a finger and store its template.

        The finger is captured twice. If it is already enrolled, nothing
        is stored and the existing position is returned.

        Returns:
            int: The template position of the finger.
        """

        self._require_initialised()

        try:
            self._set_state(EnrollmentState.AWAIT_FIRST_CAPTURE)
            self.notify("Waiting for finger...")
            self._wait_for_finger()
            self._set_state(EnrollmentState.CAPTURED_1)
            self.sensor.convert_image(CharBuffer.ONE)

            self._set_state(EnrollmentState.CHECK_EXISTING)
            position, _ = self.sensor.search_template(CharBuffer.ONE)
            if position >= 0:
                self.notify(f"Template already exists at position #{position}")
                return position

            self.notify("Remove finger...")
            time.sleep(self.remove_finger_delay)

            self._set_state(EnrollmentState.AWAIT_SECOND_CAPTURE)
            self.notify("Waiting for same finger again...")
            self._wait_for_finger()
            self._set_state(EnrollmentState.CAPTURED_2)
            self.sensor.convert_image(CharBuffer.TWO)

            self._set_state(EnrollmentState.COMPARE)
            if self.sensor.compare_characteristics() == 0:
                raise EnrollmentError("Fingers do not match")

            if not self.sensor.create_template():
                raise EnrollmentError("Could not create a template from both captures")
            position = self.sensor.store_template()

            self._set_state(EnrollmentState.STORED)
            self.notify(f"Finger enrolled successfully at template position {position}")
            return position
        except FingerprintError as e:
            self.logger.error(
                f"Enrollment aborted in state {self.enrollment_state.value}: {e}"
            )
            raise
        finally:
            # STORED stays visible until the next enrollment starts.
            if self.enrollment_state != EnrollmentState.STORED:
                self.enrollment_state = EnrollmentState.IDLE

    def search_fingerprint(self) -> tuple[int, int]:
        """
        Capture a finger and search the whole template store for it.

        Returns:
            tuple: The position and the accuracy score of the template, or
                (-1, -1) if nothing matches.
        """

        self._require_initialised()

        self.notify("Waiting for finger...")
        self._wait_for_finger()
        self.sensor.convert_image(CharBuffer.ONE)

        position, score = self.sensor.search_template(CharBuffer.ONE)
        if position < 0:
            self.notify("No match found!")
            return -1, -1

        self.notify(f"Found template at position #{position} with accuracy score of: {score}")
        return position, score

    def delete_fingerprint(self, position: int) -> bool:
        self._require_initialised()
        return self.sensor.delete_template(position)

    def get_fingerprint_image(self) -> FingerprintImage:
        """
        Capture a finger and download its image.

        Returns:
            FingerprintImage: The raw image buffer.
        """

        self._require_initialised()

        self.notify("Waiting for finger...")
        self._wait_for_finger()

        self.notify("Downloading image (this takes a while)...")
        return self.sensor.download_image()
