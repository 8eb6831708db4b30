"""
Composable parser combinators.

See the `chainparse.general` module for general purpose parsers you can use as inner parsers and as examples.

Defining parsers:
```
@parser
def foo(si: Stream) -> Result[int] | ParseFailure[None]:
    with si() as c:
        si.literal("abc")
        # etc.
        return c.result(10)                     # success
        return c.fail("Fail reason here.")      # fail
        raise c.error("Error reason here.")     # error
```

Combining parsers:
```
five = general.integer_number.eq(5)
not_five = five.not_()
five_or_complain = five.or_else(lambda: "expected 5")
```

Using parsers:
```
result = five.parse("5")
if result:
    ... # `result` is a `Result` object
else:
    ... # `result` is a `ParseFailure` object, `result.error` holds the diagnostic (if any)
```
"""

import logging

import chainparse.const as const
import chainparse.main
from chainparse.main import (
    ParseError,
    ConfigurationError,
    Response,
    Filterable,
    FilterableWithErr,
    Result,
    ParseFailure,
    Stream,
    Savepoint,
    Checkpoint,
    Parser,
    FnParser,
    parser,
    OrElse,
    EqualityFilter,
    Eq,
    Ne,
    EqOrElse,
    NeOrElse,
)
import chainparse.general as general

logging.getLogger(__name__).addHandler(logging.NullHandler())
