"""Parse and evaluate arithmetic expressions safely."""
from collections.abc import Callable as ABCCallable
import math
import operator
import re
from typing import Callable, Dict, List, Tuple


# Type alias for binary operator functions (taking two floats, returning a float)
OperatorFn: ABCCallable[[float, float], float] = Callable[[float, float], float]

# Unary operators get their own token names so the RPN stays unambiguous
UNARY_MINUS = "neg"
UNARY_PLUS = "pos"

TOKEN_PATTERN = re.compile(
    r"\s*(?:(?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)|(?P<symbol>[-+*/%^()])|(?P<other>\S))"
)


def _divide(a: float, b: float) -> float:
    """IEEE-754 division: dividing by zero gives a signed infinity or NaN."""
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _modulo(a: float, b: float) -> float:
    """Remainder with the sign of the dividend; NaN for a zero divisor."""
    if b == 0 or math.isinf(a):
        return math.nan
    return math.fmod(a, b)


def _power(a: float, b: float) -> float:
    """Exponentiation returning inf on overflow and NaN outside the real domain."""
    try:
        return math.pow(a, b)
    except OverflowError:
        # Odd integer exponents keep the sign of a negative base
        if a < 0 and float(b).is_integer() and int(b) % 2 == 1:
            return -math.inf
        return math.inf
    except ValueError:
        if a == 0 and b < 0:
            return math.inf
        return math.nan


# Mapping of binary operator symbols to (precedence, right_associative, function)
OPERATORS: Dict[str, Tuple[int, bool, OperatorFn]] = {
    "+": (1, False, operator.add),
    "-": (1, False, operator.sub),
    "*": (2, False, operator.mul),
    "/": (2, False, _divide),
    "%": (2, False, _modulo),
    "^": (4, True, _power),
}

# Unary operators bind tighter than * and / but looser than ^, so -2^2 == -4
UNARY_OPERATORS: Dict[str, Tuple[int, Callable[[float], float]]] = {
    UNARY_MINUS: (3, operator.neg),
    UNARY_PLUS: (3, operator.pos),
}


class ExpressionParser:
    """
    Parse and evaluate arithmetic expressions safely.

    Design constraints:
        - No eval(), no dynamic code execution
        - IEEE-754 results: division by zero or overflow produce inf or NaN
          instead of raising, so callers can classify them

    Algorithm:
        1. Tokenize numbers, operators and parentheses (spaces are optional)
        2. Convert to Reverse Polish Notation (RPN) using Shunting-yard
        3. Evaluate RPN using a stack

    Examples:
        - Infix expression (standard notation): 3 + 4 * (2 - 1)
        - Corresponding Reverse Polish Notation (RPN): 3 4 2 1 - * +
    """

    @staticmethod
    def tokenize(expr: str) -> List[str]:
        """
        Split an arithmetic expression into tokens.

        Unary signs are rewritten to ``neg``/``pos`` tokens when they appear at
        the start of the expression, after an operator or after ``(``.

        :param str expr: Arithmetic expression as a string

        :return: List of tokens
        :rtype: List[str]
        :raises ValueError: If the expression contains an unsupported character
        """
        tokens: List[str] = []
        for match in TOKEN_PATTERN.finditer(expr):
            if match.group("other"):
                raise ValueError(f"Invalid character: {match.group('other')!r}")
            token = match.group("number") or match.group("symbol")
            prev = tokens[-1] if tokens else None
            expects_operand = (
                prev is None or prev in OPERATORS or prev in UNARY_OPERATORS or prev == "("
            )
            if token in ("-", "+") and expects_operand:
                token = UNARY_MINUS if token == "-" else UNARY_PLUS
            tokens.append(token)
        return tokens

    @staticmethod
    def _is_number(token: str) -> bool:
        """
        Determine if a token represents a numeric value.

        Supports both integers and floating-point numbers.

        :param str token: Token string

        :return: True if token can be converted to float, else False
        :rtype: bool
        """
        try:
            float(token)
            return True
        except ValueError:
            return False

    @staticmethod
    def to_rpn(tokens: List[str]) -> List[str]:
        """
        Convert a list of tokens into Reverse Polish Notation (RPN) using the Shunting-yard algorithm.

        :param List[str] tokens: List of arithmetic tokens

        :return: List of tokens in RPN order
        :rtype: List[str]
        :raises ValueError: If parentheses are unbalanced
        """
        output: List[str] = []
        stack: List[str] = []

        for token in tokens:
            if ExpressionParser._is_number(token):
                output.append(token)
            elif token in UNARY_OPERATORS or token == "(":
                # Prefix operators and opening parentheses never pop anything
                stack.append(token)
            elif token == ")":
                while stack and stack[-1] != "(":
                    output.append(stack.pop())
                if not stack:
                    raise ValueError("Mismatched parentheses")
                stack.pop()
            else:
                prec, right_assoc, _ = OPERATORS[token]
                while stack and stack[-1] != "(":
                    top = stack[-1]
                    top_prec = (
                        UNARY_OPERATORS[top][0] if top in UNARY_OPERATORS else OPERATORS[top][0]
                    )
                    if top_prec > prec or (top_prec == prec and not right_assoc):
                        output.append(stack.pop())
                    else:
                        break
                stack.append(token)

        # Append remaining operators in reverse order (stack top first)
        while stack:
            top = stack.pop()
            if top == "(":
                raise ValueError("Mismatched parentheses")
            output.append(top)
        return output

    @staticmethod
    def evaluate(expr: str) -> float:
        """
        Evaluate an arithmetic expression safely.

        :param str expr: Arithmetic expression string

        :return: Computed result as float, possibly inf or NaN
        :rtype: float
        :raises ValueError: If expression is invalid or malformed
        """
        tokens: List[str] = ExpressionParser.tokenize(expr)

        if not tokens:
            raise ValueError("Empty expression")

        rpn: List[str] = ExpressionParser.to_rpn(tokens)

        stack: List[float] = []
        for token in rpn:
            if ExpressionParser._is_number(token):
                stack.append(float(token))
            elif token in UNARY_OPERATORS:
                if not stack:
                    raise ValueError("Invalid expression (not enough operands)")
                stack.append(UNARY_OPERATORS[token][1](stack.pop()))
            else:
                # Binary operator requires two operands
                if len(stack) < 2:
                    raise ValueError("Invalid expression (not enough operands)")
                b: float = stack.pop()
                a: float = stack.pop()
                stack.append(OPERATORS[token][2](a, b))

        if len(stack) != 1:
            raise ValueError("Invalid expression (remaining operands)")

        return stack[0]
