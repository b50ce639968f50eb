"""
Design string codec.

    *aMM0+++++*bNM2+++*cMN1+++*dLM2+++*eML1+++^ab^ac^ad^ae,5,3

*bNM2+++ : node b at x=N, z=M hosting component 2 (motor CCW), size +3
           component digits = 0 structure, 1 motor CW, 2 motor CCW, 3 foil, 4 empty
^ab      : edge from node a to node b
,5,3     : payload capacity and controller index

Positions are grid steps from M (the centre), so A..Y covers -12..12.
The grid is rotated 45 degrees from the flight frame, the forward direction
is x,z = 1,1.
"""
import hashlib
import logging
from typing import List, Tuple

from models import (Design, Node, Edge, ComponentType,
                    InvalidGrammar, OutOfRange, CapacityExceeded, NumericParseFailure)

logger = logging.getLogger(__name__)

NODE_ID_CHARS = "abcdefghijklmnopqrstuvwxyz!@#$%&()_=[]{}<>"
POSITION_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXY"
POSITION_OFFSET = 12

NODE_MARKER = "*"
EDGE_MARKER = "^"
SUFFIX_MARKER = ","

MAX_NODES = len(NODE_ID_CHARS)

# returned in place of an unparsable capacity or controller index
SENTINEL = -1


def node_index(c: str) -> int:
    index = NODE_ID_CHARS.find(c)
    if len(c) != 1 or index < 0:
        raise InvalidGrammar(f"'{c}' is not a node id")
    return index


def node_id_char(index: int) -> str:
    if not 0 <= index < MAX_NODES:
        raise InvalidGrammar(f"node index {index} has no id character")
    return NODE_ID_CHARS[index]


def position_value(c: str) -> int:
    index = POSITION_CHARS.find(c)
    if len(c) != 1 or index < 0:
        raise OutOfRange(f"'{c}' is not a position (A..Y)")
    return index - POSITION_OFFSET


def position_char(value: int) -> str:
    if not -POSITION_OFFSET <= value <= POSITION_OFFSET:
        raise OutOfRange(f"position {value} outside [-12, 12]")
    return POSITION_CHARS[value + POSITION_OFFSET]


def size_run(size: int) -> str:
    """4 -> '++++', -2 -> '--'"""
    return ("+" if size > 0 else "-") * abs(size)


def parse_size_run(run: str) -> int:
    if run == "":
        return 0
    if run == "+" * len(run):
        return len(run)
    if run == "-" * len(run):
        return -len(run)
    raise InvalidGrammar(f"size run '{run}' must be all '+' or all '-'")


def parse_node(token: str) -> Node:
    if len(token) < 4:
        raise InvalidGrammar(f"node token '{token}' is too short")

    index = node_index(token[0])
    x = position_value(token[1])
    z = position_value(token[2])

    if token[3] not in "01234":
        raise InvalidGrammar(f"component digit '{token[3]}' in '{token}'")
    component_type = ComponentType(int(token[3]))

    return Node(index, x, z, component_type, parse_size_run(token[4:]))


def parse_edge(token: str) -> Edge:
    if len(token) != 2:
        raise InvalidGrammar(f"edge token '{token}' must be two node ids")
    return Edge(node_index(token[0]), node_index(token[1]))


def split_tokens(s: str) -> Tuple[List[str], List[str], str]:
    """Returns node tokens, edge tokens and the numeric suffix"""
    body, _, suffix = s.partition(SUFFIX_MARKER)
    node_part, _, edge_part = body.partition(EDGE_MARKER)

    node_tokens = node_part.split(NODE_MARKER)
    if node_tokens[0] != "":
        raise InvalidGrammar(f"'{node_tokens[0]}' before the first node")
    node_tokens = node_tokens[1:]

    edge_tokens = edge_part.split(EDGE_MARKER) if edge_part or EDGE_MARKER in body else []
    return node_tokens, edge_tokens, suffix


def parse_suffix(suffix: str) -> Tuple[float, int]:
    """Capacity and controller index, raises NumericParseFailure"""
    fields = suffix.split(SUFFIX_MARKER)
    try:
        capacity = float(fields[0])
    except ValueError as e:
        raise NumericParseFailure(f"capacity '{fields[0]}'") from e
    try:
        controller = int(fields[1])
    except (IndexError, ValueError) as e:
        raise NumericParseFailure(f"controller index in '{suffix}'") from e
    return capacity, controller


def parse_capacity(s: str) -> float:
    """Payload capacity of a design string, SENTINEL when unparsable"""
    try:
        return float(s.split(SUFFIX_MARKER)[1])
    except (IndexError, ValueError):
        return SENTINEL


def parse_controller(s: str) -> int:
    try:
        return int(s.split(SUFFIX_MARKER)[2])
    except (IndexError, ValueError):
        return SENTINEL


def decode(s: str) -> Design:
    node_tokens, edge_tokens, suffix = split_tokens(s)

    if len(node_tokens) > MAX_NODES:
        raise CapacityExceeded(f"{len(node_tokens)} nodes, at most {MAX_NODES}")

    nodes = []
    seen = set()
    for token in node_tokens:
        node = parse_node(token)
        if node.index in seen:
            raise InvalidGrammar(f"node '{token[0]}' declared twice")
        seen.add(node.index)
        nodes.append(node)

    edges = []
    for token in edge_tokens:
        edge = parse_edge(token)
        if edge.from_index not in seen or edge.to_index not in seen:
            raise InvalidGrammar(f"edge '{token}' references an undeclared node")
        edges.append(edge)

    try:
        capacity, controller = parse_suffix(suffix)
    except NumericParseFailure as e:
        logger.warning("Unparsable numeric suffix in %r: %s", s, e)
        capacity = parse_capacity(s)
        controller = parse_controller(s)

    return Design(nodes, edges, capacity, controller)


def format_number(n: float) -> str:
    if float(n).is_integer():
        return str(int(n))
    return repr(float(n))


def encode(design: Design) -> str:
    s = ""
    for node in design.nodes:
        s += (NODE_MARKER + node_id_char(node.index)
              + position_char(node.grid_x) + position_char(node.grid_z)
              + str(node.component_type.value) + size_run(node.size))
    for edge in design.edges:
        s += EDGE_MARKER + node_id_char(edge.from_index) + node_id_char(edge.to_index)
    return (s + SUFFIX_MARKER + format_number(design.payload_capacity)
            + SUFFIX_MARKER + str(design.controller_index))


def text_hash(s: str) -> int:
    """First 8 bytes of the SHA-256 of a string, as a signed 64 bit integer"""
    hash_obj = hashlib.sha256(s.encode())
    return int.from_bytes(hash_obj.digest()[:8], byteorder='big', signed=True)


def design_hash(design: Design) -> int:
    """Stable key of a design, equal designs share it whatever their spelling"""
    return text_hash(encode(design))
