import pytest

from zfm_fingerprint import ZFM, Packet, PacketType, Status


class FakeSerial:
    """In-memory stand-in for serial.Serial.

    Responses are queued up front and handed out byte by byte, every write
    is recorded.
    """

    def __init__(self) -> None:
        self.written = bytearray()
        self.incoming = bytearray()
        self.closed = False

    def queue(self, packet_type: int, payload: bytes = b"", address: int = 0xFFFFFFFF) -> None:
        self.incoming += Packet(packet_type, payload, address).to_bytes()

    def queue_ack(self, status: int = Status.OK, data: bytes = b"") -> None:
        self.queue(PacketType.ACK, bytes([status]) + data)

    def queue_system_parameters(self, capacity: int = 200, packet_length_code: int = 1) -> None:
        data = (
            (0).to_bytes(2, "big")  # status register
            + (9).to_bytes(2, "big")  # system id
            + capacity.to_bytes(2, "big")
            + (3).to_bytes(2, "big")  # security level
            + (0xFFFFFFFF).to_bytes(4, "big")
            + packet_length_code.to_bytes(2, "big")
            + (6).to_bytes(2, "big")  # 57600 baud
        )
        self.queue_ack(Status.OK, data)

    def write(self, data: bytes) -> int:
        self.written += data
        return len(data)

    def read(self, size: int = 1) -> bytes:
        chunk = bytes(self.incoming[:size])
        del self.incoming[:size]
        return chunk

    def close(self) -> None:
        self.closed = True

    def sent_packets(self) -> list[Packet]:
        packets = []
        offset = 0
        while offset < len(self.written):
            length = int.from_bytes(self.written[offset + 7 : offset + 9], "big")
            end = offset + 9 + length
            packets.append(Packet.from_bytes(bytes(self.written[offset:end])))
            offset = end
        return packets

    def sent_instructions(self) -> list[int]:
        return [
            packet.payload[0]
            for packet in self.sent_packets()
            if packet.packet_type == PacketType.COMMAND
        ]


@pytest.fixture
def comm() -> FakeSerial:
    return FakeSerial()


@pytest.fixture
def sensor(comm: FakeSerial) -> ZFM:
    return ZFM(comm=comm)
