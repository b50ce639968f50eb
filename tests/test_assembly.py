import pytest

from assembly import sequence_edges, assemble, AssemblySequencer
from config import SafetyBounds
from grammar import decode, node_id_char
from models import Edge, EvaluationContext, RuntimeSafetyCutoff

BASE_DESIGN = "*aMM0+++++*bNM2+++*cMN1+++*dLM2+++*eML1+++^ab^ac^ad^ae,5,3"
# a 2x2 loop, the edge db closes the cycle
LOOP_DESIGN = "*aMM0*bNM1*cMN2*dNN3^ab^ac^bd^cd,0,0"


def labels(edges):
    return [node_id_char(e.from_index) + node_id_char(e.to_index) for e in edges]


def test_sequence_orders_by_destination():
    edges = [Edge(0, 3), Edge(0, 1), Edge(1, 2)]
    assert labels(sequence_edges(edges)) == ["ab", "bc", "ad"]


def test_sequence_defers_cycle_edges():
    edges = [Edge(0, 1), Edge(0, 2), Edge(1, 3), Edge(2, 3), Edge(2, 1)]
    order = sequence_edges(edges)

    assert labels(order) == ["ab", "ac", "bd", "cd", "cb"]


def test_base_design_order_and_joints():
    context = EvaluationContext()
    assembly = assemble(decode(BASE_DESIGN), context)

    assert labels(assembly.order) == ["ab", "ac", "ad", "ae"]
    assert all(e.introduces_new_node for e in assembly.order)
    assert sorted(j.index for j in assembly.joints) == [0, 1, 2, 3, 4]
    assert all(j.locked for j in assembly.joints)

    positions = {j.index: (j.grid_x, j.grid_z) for j in assembly.joints}
    assert positions == {0: (0, 0), 1: (1, 0), 2: (0, 1), 3: (-1, 0), 4: (0, -1)}
    assert len(assembly.connections) == 4
    assert context.node_counter == 5


def test_cycle_edge_reuses_joint():
    assembly = assemble(decode(LOOP_DESIGN), EvaluationContext())

    assert labels(assembly.order) == ["ab", "ac", "bd", "cd"]
    assert assembly.order[-1].introduces_new_node is False
    assert len(assembly.joints) == 4
    assert len(assembly.connections) == 4

    centers = sorted(c.center for c in assembly.connections)
    assert centers == [(0.0, 0.5), (0.5, 0.0), (0.5, 1.0), (1.0, 0.5)]


def test_non_neighbour_edge_is_skipped():
    assembly = assemble(decode("*aMM0*bOM1^ab,0,0"), EvaluationContext())

    assert assembly.connections == []
    assert assembly.order[0].introduces_new_node is False
    assert [j.index for j in assembly.joints] == [0]


def test_renamed_joint_advances_counter():
    # node c is declared but built second
    context = EvaluationContext()
    assembly = assemble(decode("*aMM0*cNM1^ac,0,0"), context)

    assert sorted(j.index for j in assembly.joints) == [0, 2]
    assert assembly.connections[0].to_index == 2
    assert context.node_counter == 3


def test_assembly_cutoff():
    bounds = SafetyBounds(assembly_steps=2)
    with pytest.warns(RuntimeSafetyCutoff):
        assembly = AssemblySequencer(decode(BASE_DESIGN), EvaluationContext(),
                                     bounds).assemble()

    assert labels(assembly.order) == ["ab", "ac"]
    assert len(assembly.cutoffs) == 1


@pytest.mark.parametrize("s", [BASE_DESIGN, LOOP_DESIGN, "*aMM0*cNM1^ac,0,0"])
def test_every_source_is_built_before_use(s):
    assembly = assemble(decode(s), EvaluationContext())

    built = {0}
    for edge in assembly.order:
        assert edge.from_index in built
        built.add(edge.to_index)
    assert assembly.cutoffs == []


def test_edge_from_unbuilt_node_is_reported():
    # c is declared after b, so cb comes first in destination order
    with pytest.warns(RuntimeSafetyCutoff):
        assembly = assemble(decode("*aMM0*bOM1*cNM0^ac^cb,0,0"), EvaluationContext())

    assert labels(assembly.order) == ["cb", "ac"]
    assert assembly.order[0].introduces_new_node is False
    assert sorted(j.index for j in assembly.joints) == [0, 2]
    assert assembly.cutoffs == ["edge cb skipped, node c is not built yet"]


def test_default_bounds_are_not_shared():
    first = AssemblySequencer(decode(BASE_DESIGN), EvaluationContext())
    second = AssemblySequencer(decode(BASE_DESIGN), EvaluationContext())
    assert first.bounds == SafetyBounds()
    assert first.bounds is not second.bounds
