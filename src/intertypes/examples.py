"""
Example modules used by the demo script and the tests.

simpleast: a small expression AST with a recursive `Term` sum.
model: equations over simpleast terms (exercises imports).
shapes: a struct and a sum with payload-carrying variants.
graphs: table schemas, one with a self-referencing foreign key.
"""
from typing import Optional

from intertypes.config import DEFAULT_CONFIG, CompilerConfig
from intertypes.model import Module
from intertypes.parser import parse_module


SIMPLEAST_SOURCE = """\
# Constants carried by a term
sum Const {
    ConstInt(value :: I64)
    ConstBool(value :: Boolean)
}

sum Term {
    Plus(terms :: List[Term])
    Times(terms :: List[Term])
    Constant(c :: Const)
    Var(name :: Ident)
}
"""

MODEL_SOURCE = """\
import simpleast

struct Equation {
    lhs :: simpleast.Term
    rhs :: simpleast.Term
}

struct Model {
    vars :: List[Ident]
    equations :: List[Equation]
}
"""

SHAPES_SOURCE = """\
struct Point {
    x :: I32
    y :: I32
}

sum Shape {
    Circle(r :: F64)
    Square(s :: F64)
}

struct Drawing {
    title :: Annot["Shown above the drawing", Str]
    origin :: Optional[Point]
    shapes :: List[Shape]
    tags :: Map[Str, I64]
}
"""

GRAPHS_SOURCE = """\
schema Ring {
    O :: Ob
    next :: Hom(O, O)
    Label :: AttrType(Str)
    label :: Attr(O, Label)
}

schema WeightedGraph {
    V :: Ob
    E :: Ob
    src :: Hom(E, V)
    tgt :: Hom(E, V)
    Weight :: AttrType(F64)
    weight :: Attr(E, Weight)
}
"""


def build_simpleast(config: CompilerConfig = DEFAULT_CONFIG) -> Module:
    return parse_module(SIMPLEAST_SOURCE, "simpleast", config=config)


def build_model(simpleast: Optional[Module] = None, config: CompilerConfig = DEFAULT_CONFIG) -> Module:
    """Build `model`, parsing simpleast too unless it is given."""
    if simpleast is None:
        simpleast = build_simpleast(config)
    return parse_module(MODEL_SOURCE, "model", imports={"simpleast": simpleast}, config=config)


def build_shapes(config: CompilerConfig = DEFAULT_CONFIG) -> Module:
    return parse_module(SHAPES_SOURCE, "shapes", config=config)


def build_graph_module(config: CompilerConfig = DEFAULT_CONFIG) -> Module:
    return parse_module(GRAPHS_SOURCE, "graphs", config=config)
