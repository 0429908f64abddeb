"""
This module provides a class and some functions to interact with
ZhianTec ZFM fingerprint sensors (ZFM-20, R30x, AS608 and compatibles).

The sensor keeps a template store on the device and talks to the host
over UART with a framed command/response protocol. Every frame looks
like this (multi-byte fields are big-endian):

    EF 01 | address (4) | type (1) | length (2) | payload (n) | checksum (2)

The length counts the payload plus the two checksum bytes. The checksum
is the 16-bit sum of the type byte, both length bytes and the payload.
"""

import logging
import re
from dataclasses import dataclass
from enum import IntEnum

import serial
import serial.tools.list_ports as list_ports


START_CODE = b"\xEF\x01"
MIN_PACKET_SIZE = 12

DEFAULT_ADDRESS = 0xFFFFFFFF
DEFAULT_PASSWORD = 0x00000000

PACKET_SIZES = (32, 64, 128, 256)
TEMPLATE_INDEX_PAGES = 4

IMAGE_WIDTH = 256
IMAGE_HEIGHT = 288


class PacketType(IntEnum):
    COMMAND = 0x01
    DATA = 0x02
    ACK = 0x07
    END_DATA = 0x08


class Instruction(IntEnum):
    READ_IMAGE = 0x01
    CONVERT_IMAGE = 0x02
    COMPARE_CHARACTERISTICS = 0x03
    SEARCH_TEMPLATE = 0x04
    CREATE_TEMPLATE = 0x05
    STORE_TEMPLATE = 0x06
    LOAD_TEMPLATE = 0x07
    # "Upload" and "download" are named from the host's point of view,
    # the datasheet uses the opposite convention.
    DOWNLOAD_CHARACTERISTICS = 0x08
    UPLOAD_CHARACTERISTICS = 0x09
    DOWNLOAD_IMAGE = 0x0A
    DELETE_TEMPLATE = 0x0C
    CLEAR_DATABASE = 0x0D
    SET_SYSTEM_PARAMETER = 0x0E
    GET_SYSTEM_PARAMETERS = 0x0F
    SET_PASSWORD = 0x12
    VERIFY_PASSWORD = 0x13
    GENERATE_RANDOM_NUMBER = 0x14
    SET_ADDRESS = 0x15
    TEMPLATE_COUNT = 0x1D
    TEMPLATE_INDEX = 0x1F


class Status(IntEnum):
    OK = 0x00
    COMMUNICATION_ERROR = 0x01
    NO_FINGER = 0x02
    READ_IMAGE_ERROR = 0x03
    MESSY_IMAGE = 0x06
    FEW_FEATURE_POINTS = 0x07
    NOT_MATCHING = 0x08
    NO_TEMPLATE_FOUND = 0x09
    CHARACTERISTICS_MISMATCH = 0x0A
    INVALID_POSITION = 0x0B
    LOAD_TEMPLATE_ERROR = 0x0C
    DOWNLOAD_CHARACTERISTICS_ERROR = 0x0D
    PACKET_RESPONSE_FAIL = 0x0E
    DOWNLOAD_IMAGE_ERROR = 0x0F
    DELETE_TEMPLATE_ERROR = 0x10
    CLEAR_DATABASE_ERROR = 0x11
    WRONG_PASSWORD = 0x13
    INVALID_IMAGE = 0x15
    FLASH_ERROR = 0x18
    INVALID_REGISTER = 0x1A
    ADDRESS_CODE = 0x20
    PASSWORD_VERIFY = 0x21
    BAD_PACKET = 0xFE
    TIMEOUT = 0xFF


STATUS_DESCRIPTIONS = {
    Status.OK: "Ok",
    Status.COMMUNICATION_ERROR: "Communication error",
    Status.NO_FINGER: "No finger on the sensor",
    Status.READ_IMAGE_ERROR: "Could not read image",
    Status.MESSY_IMAGE: "The image is too messy",
    Status.FEW_FEATURE_POINTS: "The image contains too few feature points",
    Status.NOT_MATCHING: "The characteristics do not match",
    Status.NO_TEMPLATE_FOUND: "No matching template found",
    Status.CHARACTERISTICS_MISMATCH: "The characteristics could not be combined",
    Status.INVALID_POSITION: "Invalid template position",
    Status.LOAD_TEMPLATE_ERROR: "The template could not be read",
    Status.DOWNLOAD_CHARACTERISTICS_ERROR: "Could not download characteristics",
    Status.PACKET_RESPONSE_FAIL: "Could not receive the follow-up packets",
    Status.DOWNLOAD_IMAGE_ERROR: "Could not download image",
    Status.DELETE_TEMPLATE_ERROR: "Could not delete template",
    Status.CLEAR_DATABASE_ERROR: "Could not clear database",
    Status.WRONG_PASSWORD: "Wrong password",
    Status.INVALID_IMAGE: "The image is invalid",
    Status.FLASH_ERROR: "Error writing to flash",
    Status.INVALID_REGISTER: "Invalid register number",
    Status.ADDRESS_CODE: "The address is wrong",
    Status.PASSWORD_VERIFY: "Password must be verified first",
    Status.BAD_PACKET: "Bad packet",
    Status.TIMEOUT: "Sensor timeout",
}


class CharBuffer(IntEnum):
    ONE = 0x01
    TWO = 0x02


class SystemParameter(IntEnum):
    BAUDRATE = 4
    SECURITY_LEVEL = 5
    PACKET_SIZE = 6


class FingerprintError(Exception):
    """Base class for all errors raised by the sensor driver."""


class FramingError(FingerprintError):
    """The received bytes do not form a valid or expected packet."""


class ChecksumError(FramingError):
    pass


class SensorTimeoutError(FingerprintError, TimeoutError):
    """The transport delivered no byte within its timeout."""


class ValidationError(FingerprintError, ValueError):
    """An argument is out of range. Raised before anything is sent."""


class PreconditionError(FingerprintError, RuntimeError):
    pass


class ProtocolStatusError(FingerprintError):
    """The sensor answered with a status that the command cannot handle."""

    def __init__(self, operation: str, status: int) -> None:
        self.operation = operation
        self.status = status
        description = STATUS_DESCRIPTIONS.get(status, "Unknown error")
        super().__init__(
            f"{operation} failed with status 0x{status:02X}: {description}"
        )


def find_comm_ports(regex_pattern: str) -> list[tuple[str, str]]:
    """
    Find the communication ports that match the regex pattern.

    Parameters:
        regex_pattern: The regex pattern to match the port description.

    Returns:
        list: A list of tuples containing the port and description.

    Example:
        ```
        matched_ports = find_comm_ports(".*CP210.*")
        if len(matched_ports) == 0:
            print("No device found")
        else:
            port = matched_ports[0][0]
        ```
    """

    ports = list_ports.comports()
    matched_ports = []

    for port, desc, _ in ports:
        if re.search(regex_pattern, desc):
            matched_ports.append((port, desc))

    return matched_ports


def get_checksum(data: bytes) -> int:
    """
    Get the checksum of the data.

    The checksum is the sum of all bytes in the data, truncated to 16 bits.

    Parameters:
        data: The type byte, the two length bytes and the payload.

    Returns:
        int: The checksum.
    """

    if not isinstance(data, (bytes, bytearray)):
        raise TypeError("Data must be of type bytes or bytearray")

    return sum(data) & 0xFFFF


def make_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Instances share the logger, only attach the console handler once.
    if not logger.handlers:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s.%(funcName)s - %(levelname)s - %(message)s"
        )
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


@dataclass
class Packet:
    """A single protocol frame."""

    packet_type: int
    payload: bytes = b""
    address: int = DEFAULT_ADDRESS

    def __repr__(self) -> str:
        return (
            f"Packet(type=0x{self.packet_type:02X}, "
            f"address=0x{self.address:08X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )

    @property
    def status(self) -> int:
        """The status byte of an acknowledgment packet."""
        if not self.payload:
            raise FramingError("The acknowledgment packet carries no status byte")
        return self.payload[0]

    def to_bytes(self) -> bytes:
        # The length counts the payload and the two checksum bytes.
        length = (len(self.payload) + 2).to_bytes(2, byteorder="big")
        checksum_data = bytes([self.packet_type]) + length + self.payload
        checksum = get_checksum(checksum_data).to_bytes(2, byteorder="big")

        address = self.address.to_bytes(4, byteorder="big")
        return START_CODE + address + checksum_data + checksum

    @staticmethod
    def from_bytes(packet_bytes: bytes) -> "Packet":
        """
        Parse and validate a complete packet.

        Parameters:
            packet_bytes: The raw bytes of exactly one packet.

        Returns:
            Packet: The parsed packet.
        """

        if len(packet_bytes) < 11:
            raise FramingError(
                f"The received packet is too short ({len(packet_bytes)} bytes)"
            )
        if packet_bytes[:2] != START_CODE:
            raise FramingError("The received packet does not begin with a valid header")

        length = int.from_bytes(packet_bytes[7:9], byteorder="big")
        if length < 2 or len(packet_bytes) != 9 + length:
            raise FramingError(
                f"Length mismatch in received packet: length field={length}, "
                f"packet size={len(packet_bytes)}"
            )

        payload = packet_bytes[9 : 7 + length]
        received_checksum = int.from_bytes(packet_bytes[-2:], byteorder="big")
        packet_checksum = get_checksum(packet_bytes[6 : 7 + length])
        if received_checksum != packet_checksum:
            raise ChecksumError("The received packet is corrupted (the checksum is wrong)")

        return Packet(
            packet_type=packet_bytes[6],
            payload=bytes(payload),
            address=int.from_bytes(packet_bytes[2:6], byteorder="big"),
        )


def read_packet(comm: serial.Serial) -> Packet:
    """
    Read one packet from the byte stream, one byte at a time.

    Parameters:
        comm: An open serial stream with a blocking ``read(size)``.

    Returns:
        Packet: The received packet.
    """

    received = bytearray()
    max_length = max(PACKET_SIZES) + 2

    while True:
        fragment = comm.read(1)
        if not fragment:
            if received:
                raise FramingError(
                    f"Received a truncated packet ({len(received)} bytes)"
                )
            raise SensorTimeoutError("Timed out waiting for the sensor")
        received += fragment

        # The smallest packet the sensor sends is 12 bytes long.
        if len(received) < MIN_PACKET_SIZE:
            continue

        if received[:2] != START_CODE:
            raise FramingError("The received packet does not begin with a valid header")

        length = int.from_bytes(received[7:9], byteorder="big")
        if length < 2 or length > max_length:
            raise FramingError(f"The received packet length is invalid: {length}")
        if len(received) < 9 + length:
            continue

        return Packet.from_bytes(bytes(received))


@dataclass
class SystemParameters:
    status_register: int
    system_id: int
    storage_capacity: int
    security_level: int
    sensor_address: int
    packet_length_code: int
    baudrate_code: int

    @property
    def max_packet_size(self) -> int:
        if not 0 <= self.packet_length_code < len(PACKET_SIZES):
            raise FingerprintError(
                f"Invalid packet size code: {self.packet_length_code}"
            )
        return PACKET_SIZES[self.packet_length_code]

    @property
    def baudrate(self) -> int:
        return self.baudrate_code * 9600

    @staticmethod
    def from_bytes(data: bytes) -> "SystemParameters":
        if len(data) < 16:
            raise FramingError(
                f"System parameters must be 16 bytes long, got {len(data)}"
            )

        def field(start: int, size: int = 2) -> int:
            return int.from_bytes(data[start : start + size], byteorder="big")

        return SystemParameters(
            status_register=field(0),
            system_id=field(2),
            storage_capacity=field(4),
            security_level=field(6),
            sensor_address=field(8, 4),
            packet_length_code=field(12),
            baudrate_code=field(14),
        )


@dataclass
class FingerprintImage:
    """Raw image buffer, two 4-bit pixels per byte."""

    data: bytes
    width: int = IMAGE_WIDTH
    height: int = IMAGE_HEIGHT

    def __repr__(self) -> str:
        return (
            f"FingerprintImage(width={self.width}, height={self.height}, "
            f"data_len={len(self.data)})"
        )

    def pixels(self) -> list[int]:
        """
        Unpack the image buffer into 4-bit pixel values.

        The low nibble of each byte is the first pixel.

        Returns:
            list: One value between 0 and 15 per pixel.
        """

        pixels = []
        for byte in self.data:
            pixels.append(byte & 0x0F)
            pixels.append(byte >> 4)
        return pixels


class ZFM:
    def __init__(
        self,
        port: str = "/dev/ttyUSB0",
        baudrate: int = 57600,
        address: int = DEFAULT_ADDRESS,
        password: int = DEFAULT_PASSWORD,
        timeout: float | None = 2.0,
        comm: serial.Serial | None = None,
    ) -> None:
        """
        Initialize the object.

        Parameters:
            port: The communication port of the fingerprint sensor.
            baudrate: The baudrate of the serial communication. Must be a
                multiple of 9600 between 9600 and 115200.
            address: The sensor address.
            password: The sensor password.
            timeout: Seconds to wait for each received byte. None blocks forever.
            comm: An already open serial stream. If given, init_comm()
                does not need to be called.
        """

        if baudrate < 9600 or baudrate > 115200 or baudrate % 9600 != 0:
            raise ValidationError(f"The given baudrate is invalid: {baudrate}")
        self._check_u32(address, "address")
        self._check_u32(password, "password")

        self.port = port
        self.baudrate = baudrate
        self.address = address
        self.password = password
        self.timeout = timeout
        self.comm = comm

        self.logger = make_logger(self.__class__.__name__)

    @staticmethod
    def _check_u32(value: int, name: str) -> None:
        if not 0x00000000 <= value <= 0xFFFFFFFF:
            raise ValidationError(f"The given {name} is invalid: {value}")

    @staticmethod
    def _check_char_buffer(char_buffer: int) -> None:
        if char_buffer not in (CharBuffer.ONE, CharBuffer.TWO):
            raise ValidationError(f"The given char buffer is invalid: {char_buffer}")

    def init_comm(self) -> bool:
        """
        Initialize the serial communication with the fingerprint sensor.

        Returns:
            bool: True if successful, otherwise False.
        """

        try:
            self.comm = serial.Serial(
                self.port,
                self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                timeout=self.timeout,
            )
            self.logger.info(f"Opened serial port {self.port}")
        except serial.SerialException as e:
            self.logger.error(f"Failed to open serial port {self.port}")
            self.logger.error(f"Error: {e}", exc_info=True)
            return False
        return True

    def close_comm(self) -> bool:
        """
        Close the serial communication with the fingerprint sensor.

        Returns:
            bool: True if successful, otherwise False.
        """

        if self.comm is None:
            return True

        try:
            self.comm.close()
            self.logger.info(f"Closed serial port {self.port}")
        except serial.SerialException as e:
            self.logger.error(f"Failed to close serial port {self.port}")
            self.logger.error(f"Error: {e}", exc_info=True)
            return False
        self.comm = None
        return True

    def _write_packet(self, packet_type: int, payload: bytes) -> None:
        if self.comm is None:
            raise PreconditionError("The serial communication is not initialized")

        packet = Packet(packet_type=packet_type, payload=payload, address=self.address)
        self.comm.write(packet.to_bytes())
        self.logger.debug(f"Sent packet: {packet}")

    def _read_packet(self) -> Packet:
        if self.comm is None:
            raise PreconditionError("The serial communication is not initialized")

        packet = read_packet(self.comm)
        self.logger.debug(f"Received packet: {packet}")
        return packet

    def _request_and_response(
        self,
        operation: str,
        payload: bytes,
        valid_status: list[int] | int = Status.OK,
    ) -> Packet:
        """
        Send a command packet and receive its acknowledgment.

        Parameters:
            operation: The name of the command, used in errors and logs.
            payload: The instruction code followed by its parameters.
            valid_status: Status codes the caller handles itself.

        Returns:
            Packet: The acknowledgment packet. Its status is one of valid_status.
        """

        self._write_packet(PacketType.COMMAND, payload)
        response = self._read_packet()

        if response.packet_type != PacketType.ACK:
            self.logger.error(
                f"{operation}: expected an ack packet, got type 0x{response.packet_type:02X}"
            )
            raise FramingError(f"{operation}: the received packet is no ack packet")

        if isinstance(valid_status, int):
            valid_status = [valid_status]
        if response.status not in valid_status:
            error = ProtocolStatusError(operation, response.status)
            self.logger.error(str(error))
            raise error

        return response

    def _receive_data_packets(self, operation: str) -> bytes:
        data = bytearray()
        packet_count = 0

        while True:
            packet = self._read_packet()
            if packet.packet_type not in (PacketType.DATA, PacketType.END_DATA):
                self.logger.error(
                    f"{operation}: expected a data packet, got type 0x{packet.packet_type:02X}"
                )
                raise FramingError(f"{operation}: the received packet is no data packet")

            data += packet.payload
            packet_count += 1
            if packet.packet_type == PacketType.END_DATA:
                break

        self.logger.debug(
            f"{operation}: received {len(data)} bytes in {packet_count} packets"
        )
        return bytes(data)

    def _send_data_packets(self, data: bytes, max_packet_size: int) -> None:
        chunks = [
            data[i : i + max_packet_size] for i in range(0, len(data), max_packet_size)
        ]
        for chunk in chunks[:-1]:
            self._write_packet(PacketType.DATA, chunk)
        self._write_packet(PacketType.END_DATA, chunks[-1])

    def verify_password(self) -> bool:
        """
        Verify the session password against the sensor.

        Returns:
            bool: True if the password is correct, False if it is wrong.
        """

        response = self._request_and_response(
            "VerifyPassword",
            bytes([Instruction.VERIFY_PASSWORD])
            + self.password.to_bytes(4, byteorder="big"),
            valid_status=[Status.OK, Status.WRONG_PASSWORD],
        )

        if response.status == Status.WRONG_PASSWORD:
            self.logger.error("The sensor password is wrong")
            return False

        self.logger.info("Verified sensor password")
        return True

    def set_password(self, new_password: int) -> bool:
        """
        Set the password of the sensor.

        The session keeps using the old password until the sensor
        acknowledges the new one.

        Parameters:
            new_password: The new 32-bit password.

        Returns:
            bool: True if the password was set.
        """

        self._check_u32(new_password, "password")

        self._request_and_response(
            "SetPassword",
            bytes([Instruction.SET_PASSWORD]) + new_password.to_bytes(4, byteorder="big"),
        )

        self.password = new_password
        self.logger.info("Set new sensor password")
        return True

    def set_address(self, new_address: int) -> bool:
        """
        Set the address of the sensor.

        Parameters:
            new_address: The new 32-bit address.

        Returns:
            bool: True if the address was set.
        """

        self._check_u32(new_address, "address")

        self._request_and_response(
            "SetAddress",
            bytes([Instruction.SET_ADDRESS]) + new_address.to_bytes(4, byteorder="big"),
        )

        self.address = new_address
        self.logger.info(f"Set new sensor address: 0x{new_address:08X}")
        return True

    def set_system_parameter(self, parameter: int, value: int) -> bool:
        """
        Set a system parameter of the sensor.

        Parameters:
            parameter: The parameter number (4: baudrate code,
                5: security level, 6: packet size code).
            value: The new value of the parameter.

        Returns:
            bool: True if the parameter was set.
        """

        if parameter == SystemParameter.BAUDRATE:
            if value < 1 or value > 12:
                raise ValidationError(f"The given baudrate code is invalid: {value}")
        elif parameter == SystemParameter.SECURITY_LEVEL:
            if value < 1 or value > 5:
                raise ValidationError(f"The given security level is invalid: {value}")
        elif parameter == SystemParameter.PACKET_SIZE:
            if value < 0 or value > 3:
                raise ValidationError(f"The given packet size code is invalid: {value}")
        else:
            raise ValidationError(f"The given parameter number is invalid: {parameter}")

        self._request_and_response(
            "SetSystemParameter",
            bytes([Instruction.SET_SYSTEM_PARAMETER, parameter, value]),
        )

        self.logger.info(f"Set system parameter {parameter} to {value}")
        return True

    def set_baudrate(self, baudrate: int) -> bool:
        """
        Set the baudrate of the sensor.

        The serial port must be reopened with the new baudrate afterwards.

        Parameters:
            baudrate: A multiple of 9600 up to 115200.

        Returns:
            bool: True if the baudrate was set.
        """

        if baudrate % 9600 != 0:
            raise ValidationError(f"The given baudrate is invalid: {baudrate}")

        return self.set_system_parameter(SystemParameter.BAUDRATE, baudrate // 9600)

    def set_security_level(self, security_level: int) -> bool:
        return self.set_system_parameter(SystemParameter.SECURITY_LEVEL, security_level)

    def set_max_packet_size(self, packet_size: int) -> bool:
        """
        Set the maximum size of a single data packet.

        Parameters:
            packet_size: One of 32, 64, 128 or 256.

        Returns:
            bool: True if the packet size was set.
        """

        if packet_size not in PACKET_SIZES:
            raise ValidationError(f"Invalid packet size: {packet_size}")

        return self.set_system_parameter(
            SystemParameter.PACKET_SIZE, PACKET_SIZES.index(packet_size)
        )

    def get_system_parameters(self) -> SystemParameters:
        """
        Get all system parameters of the sensor.

        Returns:
            SystemParameters: A fresh snapshot, read from the sensor.
        """

        response = self._request_and_response(
            "GetSystemParameters", bytes([Instruction.GET_SYSTEM_PARAMETERS])
        )

        parameters = SystemParameters.from_bytes(response.payload[1:])
        self.logger.debug(f"System parameters: {parameters}")
        return parameters

    def get_storage_capacity(self) -> int:
        return self.get_system_parameters().storage_capacity

    def get_security_level(self) -> int:
        return self.get_system_parameters().security_level

    def get_max_packet_size(self) -> int:
        return self.get_system_parameters().max_packet_size

    def get_baudrate(self) -> int:
        return self.get_system_parameters().baudrate

    def get_template_index(self, page: int) -> list[bool]:
        """
        Get the usage of the template positions on an index page.

        Parameters:
            page: The index page (0-3).

        Returns:
            list: One entry per position on the page, True if it is used.
        """

        if page < 0 or page >= TEMPLATE_INDEX_PAGES:
            raise ValidationError(f"The given index page is invalid: {page}")

        response = self._request_and_response(
            "TemplateIndex", bytes([Instruction.TEMPLATE_INDEX, page])
        )

        # Each bit marks one position, lowest bit first.
        template_index = []
        for index_byte in response.payload[1:]:
            for bit in range(8):
                template_index.append(bool(index_byte & (1 << bit)))
        return template_index

    def get_template_count(self) -> int:
        """
        Get the number of stored templates.

        Returns:
            int: The number of stored templates.
        """

        response = self._request_and_response(
            "TemplateCount", bytes([Instruction.TEMPLATE_COUNT])
        )

        template_count = int.from_bytes(response.payload[1:3], byteorder="big")
        self.logger.info(f"Stored template count: {template_count}")
        return template_count

    def find_free_slot(self, capacity: int) -> int:
        """
        Find the first unused template position.

        Parameters:
            capacity: The storage capacity of the sensor.

        Returns:
            int: The free position, or -1 if every position below the
                capacity is in use.
        """

        for page in range(TEMPLATE_INDEX_PAGES):
            template_index = self.get_template_index(page)
            for i, used in enumerate(template_index):
                position = len(template_index) * page + i
                if position >= capacity:
                    return -1
                if not used:
                    self.logger.debug(f"Found free template position {position}")
                    return position

        return -1

    def read_image(self) -> bool:
        """
        Read the image of a finger into the image buffer.

        Returns:
            bool: True if an image was read, False if no finger is present.
        """

        response = self._request_and_response(
            "ReadImage",
            bytes([Instruction.READ_IMAGE]),
            valid_status=[Status.OK, Status.NO_FINGER],
        )
        return response.status == Status.OK

    def download_image(self) -> FingerprintImage:
        """
        Download the image buffer from the sensor.

        This transfers several kilobytes and takes a while.

        Returns:
            FingerprintImage: The raw image.
        """

        self._request_and_response("DownloadImage", bytes([Instruction.DOWNLOAD_IMAGE]))

        image = FingerprintImage(data=self._receive_data_packets("DownloadImage"))
        expected_size = image.width * image.height // 2
        if len(image.data) != expected_size:
            self.logger.warning(
                f"Unexpected image size: expected={expected_size}, actual={len(image.data)}"
            )

        self.logger.info(f"Downloaded image ({len(image.data)} bytes)")
        return image

    def convert_image(self, char_buffer: int = CharBuffer.ONE) -> bool:
        """
        Convert the image buffer to characteristics in a char buffer.

        Parameters:
            char_buffer: The char buffer (1 or 2) to store the characteristics.

        Returns:
            bool: True if the image was converted.
        """

        self._check_char_buffer(char_buffer)

        self._request_and_response(
            "ConvertImage", bytes([Instruction.CONVERT_IMAGE, char_buffer])
        )

        self.logger.info(f"Converted image into char buffer {char_buffer}")
        return True

    def create_template(self) -> bool:
        """
        Combine both char buffers into one template.

        The template is stored in both char buffers afterwards.

        Returns:
            bool: True if the template was created, False if the
                characteristics do not belong together.
        """

        response = self._request_and_response(
            "CreateTemplate",
            bytes([Instruction.CREATE_TEMPLATE]),
            valid_status=[Status.OK, Status.CHARACTERISTICS_MISMATCH],
        )

        if response.status == Status.CHARACTERISTICS_MISMATCH:
            self.logger.error("Could not create template, the characteristics do not match")
            return False

        self.logger.info("Created template")
        return True

    def store_template(
        self, position: int | None = None, char_buffer: int = CharBuffer.ONE
    ) -> int:
        """
        Store the template of a char buffer in the template store.

        Parameters:
            position: The position to store the template. If None, the
                first free position is used.
            char_buffer: The char buffer (1 or 2) holding the template.

        Returns:
            int: The position where the template was stored.
        """

        self._check_char_buffer(char_buffer)
        if position is not None and position < 0:
            raise ValidationError(f"The given position is invalid: {position}")

        capacity = self.get_storage_capacity()
        if position is None:
            position = self.find_free_slot(capacity)

        if position < 0 or position >= capacity:
            raise ValidationError(
                f"The given position is invalid: {position} (capacity={capacity})"
            )

        self._request_and_response(
            "StoreTemplate",
            bytes([Instruction.STORE_TEMPLATE, char_buffer])
            + position.to_bytes(2, byteorder="big"),
        )

        self.logger.info(f"Stored template at position {position}")
        return position

    def search_template(
        self,
        char_buffer: int = CharBuffer.ONE,
        position_start: int = 0,
        count: int | None = None,
    ) -> tuple[int, int]:
        """
        Search the template store for the characteristics in a char buffer.

        Parameters:
            char_buffer: The char buffer (1 or 2) to search for.
            position_start: The first position to search.
            count: The number of positions to search. If None, the whole
                storage capacity is searched.

        Returns:
            tuple: The position and the accuracy score of the found
                template, or (-1, -1) if nothing matches.
        """

        self._check_char_buffer(char_buffer)
        if not 0 <= position_start <= 0xFFFF:
            raise ValidationError(f"The given start position is invalid: {position_start}")
        if count is not None and not 0 < count <= 0xFFFF:
            raise ValidationError(f"The given count is invalid: {count}")

        if count is None:
            count = self.get_storage_capacity()

        response = self._request_and_response(
            "SearchTemplate",
            bytes([Instruction.SEARCH_TEMPLATE, char_buffer])
            + position_start.to_bytes(2, byteorder="big")
            + count.to_bytes(2, byteorder="big"),
            valid_status=[Status.OK, Status.NO_TEMPLATE_FOUND],
        )

        if response.status == Status.NO_TEMPLATE_FOUND:
            self.logger.info("No matching template found")
            return -1, -1

        position = int.from_bytes(response.payload[1:3], byteorder="big")
        score = int.from_bytes(response.payload[3:5], byteorder="big")
        self.logger.info(f"Found template at position {position} (score={score})")
        return position, score

    def load_template(self, position: int, char_buffer: int = CharBuffer.ONE) -> bool:
        """
        Load a stored template into a char buffer.

        Parameters:
            position: The position of the template.
            char_buffer: The char buffer (1 or 2) to load the template into.

        Returns:
            bool: True if the template was loaded.
        """

        self._check_char_buffer(char_buffer)
        if position < 0:
            raise ValidationError(f"The given position is invalid: {position}")

        capacity = self.get_storage_capacity()
        if position >= capacity:
            raise ValidationError(
                f"The given position is invalid: {position} (capacity={capacity})"
            )

        self._request_and_response(
            "LoadTemplate",
            bytes([Instruction.LOAD_TEMPLATE, char_buffer])
            + position.to_bytes(2, byteorder="big"),
        )

        self.logger.info(f"Loaded template {position} into char buffer {char_buffer}")
        return True

    def delete_template(self, position: int, count: int = 1) -> bool:
        """
        Delete templates from the template store.

        Parameters:
            position: The first position to delete.
            count: The number of templates to delete.

        Returns:
            bool: True if the templates were deleted, False if the sensor
                could not delete them.
        """

        if position < 0:
            raise ValidationError(f"The given position is invalid: {position}")
        if count < 0:
            raise ValidationError(f"The given count is invalid: {count}")

        capacity = self.get_storage_capacity()
        if position >= capacity:
            raise ValidationError(
                f"The given position is invalid: {position} (capacity={capacity})"
            )
        if count > capacity - position:
            raise ValidationError(
                f"The given count is invalid: {count} (capacity={capacity})"
            )

        response = self._request_and_response(
            "DeleteTemplate",
            bytes([Instruction.DELETE_TEMPLATE])
            + position.to_bytes(2, byteorder="big")
            + count.to_bytes(2, byteorder="big"),
            valid_status=[Status.OK, Status.DELETE_TEMPLATE_ERROR],
        )

        if response.status == Status.DELETE_TEMPLATE_ERROR:
            self.logger.error(f"Could not delete template (position={position}, count={count})")
            return False

        self.logger.info(f"Deleted template (position={position}, count={count})")
        return True

    def clear_database(self) -> bool:
        """
        Delete all templates from the template store.

        Returns:
            bool: True if the store was cleared, False if the sensor could not
                clear it.
        """

        response = self._request_and_response(
            "ClearDatabase",
            bytes([Instruction.CLEAR_DATABASE]),
            valid_status=[Status.OK, Status.CLEAR_DATABASE_ERROR],
        )

        if response.status == Status.CLEAR_DATABASE_ERROR:
            self.logger.error("Could not clear database")
            return False

        self.logger.info("Cleared database")
        return True

    def compare_characteristics(self) -> int:
        """
        Compare the characteristics of char buffer 1 with char buffer 2.

        Returns:
            int: The accuracy score. 0 means the fingers are not the same.
        """

        response = self._request_and_response(
            "CompareCharacteristics",
            bytes([Instruction.COMPARE_CHARACTERISTICS]),
            valid_status=[Status.OK, Status.NOT_MATCHING],
        )

        if response.status == Status.NOT_MATCHING:
            self.logger.info("The characteristics do not match")
            return 0

        score = int.from_bytes(response.payload[1:3], byteorder="big")
        self.logger.info(f"Compared characteristics (score={score})")
        return score

    def upload_characteristics(
        self, characteristics: bytes, char_buffer: int = CharBuffer.ONE
    ) -> bool:
        """
        Upload characteristics into a char buffer.

        The characteristics are downloaded again afterwards, the upload only
        counts as successful if they come back unchanged.

        Parameters:
            characteristics: The characteristics data.
            char_buffer: The char buffer (1 or 2) to upload into.

        Returns:
            bool: True if the upload was verified, otherwise False.
        """

        self._check_char_buffer(char_buffer)
        if len(characteristics) < 1:
            raise ValidationError("The characteristics data is required")

        # The sensor setting can change at runtime, so ask every time.
        max_packet_size = self.get_max_packet_size()

        self._request_and_response(
            "UploadCharacteristics",
            bytes([Instruction.UPLOAD_CHARACTERISTICS, char_buffer]),
        )
        self._send_data_packets(bytes(characteristics), max_packet_size)

        downloaded = self.download_characteristics(char_buffer)
        if downloaded != bytes(characteristics):
            self.logger.error(
                f"Uploaded characteristics could not be verified (char buffer {char_buffer})"
            )
            return False

        self.logger.info(
            f"Uploaded characteristics into char buffer {char_buffer} ({len(downloaded)} bytes)"
        )
        return True

    def download_characteristics(self, char_buffer: int = CharBuffer.ONE) -> bytes:
        """
        Download the characteristics of a char buffer.

        Parameters:
            char_buffer: The char buffer (1 or 2) to download.

        Returns:
            bytes: The characteristics data.
        """

        self._check_char_buffer(char_buffer)

        self._request_and_response(
            "DownloadCharacteristics",
            bytes([Instruction.DOWNLOAD_CHARACTERISTICS, char_buffer]),
        )

        characteristics = self._receive_data_packets("DownloadCharacteristics")
        self.logger.info(
            f"Downloaded characteristics of char buffer {char_buffer} ({len(characteristics)} bytes)"
        )
        return characteristics

    def generate_random_number(self) -> int:
        response = self._request_and_response(
            "GenerateRandomNumber", bytes([Instruction.GENERATE_RANDOM_NUMBER])
        )
        return int.from_bytes(response.payload[1:5], byteorder="big")
