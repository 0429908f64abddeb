"""Tests for the enrollment and search workflows."""

import pytest

from zfm_controller import (
    EnrollmentError,
    EnrollmentState,
    FingerprintController,
    FingerWaitTimeout,
    StorageUsage,
)
from zfm_fingerprint import (
    FingerprintError,
    Instruction,
    PacketType,
    PreconditionError,
    Status,
)


@pytest.fixture
def messages() -> list[str]:
    return []


@pytest.fixture
def controller(sensor, comm, messages) -> FingerprintController:
    comm.queue_ack(Status.OK)
    controller = FingerprintController(sensor, notify=messages.append, remove_finger_delay=0)
    controller.initialise()
    return controller


def instructions_after_initialise(comm) -> list[int]:
    return comm.sent_instructions()[1:]


def test_initialise_verifies_password(controller, comm):
    assert controller.initialised
    assert comm.sent_instructions() == [Instruction.VERIFY_PASSWORD]


def test_initialise_wrong_password(sensor, comm):
    comm.queue_ack(Status.WRONG_PASSWORD)
    controller = FingerprintController(sensor)

    with pytest.raises(FingerprintError, match="password is wrong"):
        controller.initialise()
    assert not controller.initialised


def test_initialise_twice(controller):
    with pytest.raises(PreconditionError):
        controller.initialise()


def test_workflows_require_initialise(sensor, comm):
    controller = FingerprintController(sensor)

    with pytest.raises(PreconditionError):
        controller.search_fingerprint()
    with pytest.raises(PreconditionError):
        controller.enroll_fingerprint()
    with pytest.raises(PreconditionError):
        controller.get_storage_usage()
    with pytest.raises(PreconditionError):
        controller.delete_fingerprint(0)
    assert comm.written == b""


def test_close(controller, comm):
    controller.close()
    assert comm.closed
    assert not controller.initialised


def test_invalid_poll_attempts(sensor):
    with pytest.raises(ValueError):
        FingerprintController(sensor, poll_attempts=0)


def test_get_storage_usage(controller, comm):
    comm.queue_ack(Status.OK, b"\x00\x05")
    comm.queue_system_parameters(capacity=200)

    assert controller.get_storage_usage() == StorageUsage(used=5, total=200)


def test_search_fingerprint_found(controller, comm, messages):
    comm.queue_ack(Status.NO_FINGER)
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue_system_parameters(capacity=200)
    comm.queue_ack(Status.OK, b"\x00\x05\x00\x64")

    assert controller.search_fingerprint() == (5, 100)
    assert instructions_after_initialise(comm) == [
        Instruction.READ_IMAGE,
        Instruction.READ_IMAGE,
        Instruction.CONVERT_IMAGE,
        Instruction.GET_SYSTEM_PARAMETERS,
        Instruction.SEARCH_TEMPLATE,
    ]
    assert "Found template at position #5" in messages[-1]


def test_search_fingerprint_not_found(controller, comm, messages):
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue_system_parameters(capacity=200)
    comm.queue_ack(Status.NO_TEMPLATE_FOUND)

    assert controller.search_fingerprint() == (-1, -1)
    assert messages[-1] == "No match found!"


def test_poll_attempts_bound_the_wait(sensor, comm):
    comm.queue_ack(Status.OK)
    controller = FingerprintController(sensor, poll_attempts=3)
    controller.initialise()
    for _ in range(3):
        comm.queue_ack(Status.NO_FINGER)

    with pytest.raises(FingerWaitTimeout):
        controller.search_fingerprint()
    assert instructions_after_initialise(comm) == [Instruction.READ_IMAGE] * 3


def test_enroll_existing_finger_is_idempotent(controller, comm, messages):
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue_system_parameters(capacity=200)
    comm.queue_ack(Status.OK, b"\x00\x07\x00\x32")

    assert controller.enroll_fingerprint() == 7
    assert instructions_after_initialise(comm) == [
        Instruction.READ_IMAGE,
        Instruction.CONVERT_IMAGE,
        Instruction.GET_SYSTEM_PARAMETERS,
        Instruction.SEARCH_TEMPLATE,
    ]
    assert messages[-1] == "Template already exists at position #7"
    assert controller.enrollment_state == EnrollmentState.IDLE


def test_enroll_new_finger(controller, comm, messages):
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue_system_parameters(capacity=200)
    comm.queue_ack(Status.NO_TEMPLATE_FOUND)
    comm.queue_ack(Status.NO_FINGER)
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK, b"\x00\x40")
    comm.queue_ack(Status.OK)
    comm.queue_system_parameters(capacity=200)
    comm.queue_ack(Status.OK, b"\x03" + bytes(31))
    comm.queue_ack(Status.OK)

    assert controller.enroll_fingerprint() == 2
    assert instructions_after_initialise(comm) == [
        Instruction.READ_IMAGE,
        Instruction.CONVERT_IMAGE,
        Instruction.GET_SYSTEM_PARAMETERS,
        Instruction.SEARCH_TEMPLATE,
        Instruction.READ_IMAGE,
        Instruction.READ_IMAGE,
        Instruction.CONVERT_IMAGE,
        Instruction.COMPARE_CHARACTERISTICS,
        Instruction.CREATE_TEMPLATE,
        Instruction.GET_SYSTEM_PARAMETERS,
        Instruction.TEMPLATE_INDEX,
        Instruction.STORE_TEMPLATE,
    ]

    converts = [
        packet.payload
        for packet in comm.sent_packets()
        if packet.payload[:1] == bytes([Instruction.CONVERT_IMAGE])
    ]
    assert converts == [b"\x02\x01", b"\x02\x02"]
    assert "Remove finger..." in messages
    assert messages[-1] == "Finger enrolled successfully at template position 2"
    assert controller.enrollment_state == EnrollmentState.STORED


def test_enroll_mismatch_stores_nothing(controller, comm):
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue_system_parameters(capacity=200)
    comm.queue_ack(Status.NO_TEMPLATE_FOUND)
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.NOT_MATCHING)

    with pytest.raises(EnrollmentError, match="Fingers do not match"):
        controller.enroll_fingerprint()

    sent = instructions_after_initialise(comm)
    assert sent[-1] == Instruction.COMPARE_CHARACTERISTICS
    assert Instruction.CREATE_TEMPLATE not in sent
    assert Instruction.STORE_TEMPLATE not in sent
    assert controller.enrollment_state == EnrollmentState.IDLE


def test_enroll_template_creation_fails(controller, comm):
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue_system_parameters(capacity=200)
    comm.queue_ack(Status.NO_TEMPLATE_FOUND)
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK, b"\x00\x40")
    comm.queue_ack(Status.CHARACTERISTICS_MISMATCH)

    with pytest.raises(EnrollmentError):
        controller.enroll_fingerprint()
    assert Instruction.STORE_TEMPLATE not in comm.sent_instructions()


def test_delete_fingerprint(controller, comm):
    comm.queue_system_parameters(capacity=200)
    comm.queue_ack(Status.OK)

    assert controller.delete_fingerprint(4) is True
    assert comm.sent_packets()[-1].payload == b"\x0C\x00\x04\x00\x01"


def test_get_fingerprint_image(controller, comm, messages):
    comm.queue_ack(Status.OK)
    comm.queue_ack(Status.OK)
    comm.queue(PacketType.DATA, b"\x12\x34")
    comm.queue(PacketType.END_DATA, b"\x56")

    image = controller.get_fingerprint_image()

    assert image.data == b"\x12\x34\x56"
    assert instructions_after_initialise(comm) == [
        Instruction.READ_IMAGE,
        Instruction.DOWNLOAD_IMAGE,
    ]
    assert messages[-1] == "Downloading image (this takes a while)..."
