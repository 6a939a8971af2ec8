import re

from mathdocx.math_context import MathContext


def test_tokens_are_sequential_and_zero_padded():
    ctx = MathContext()
    assert ctx.register('<m:oMath/>') == '__MATH_000001__'
    assert ctx.register('<m:oMath/>', display_mode=True) == '__MATH_000002__'


def test_replacements_keep_registration_order():
    ctx = MathContext()
    first = ctx.register('<m:oMath>a</m:oMath>')
    second = ctx.register('<m:oMath>b</m:oMath>', display_mode=True)

    assert [r.token for r in ctx.replacements] == [first, second]
    assert ctx.replacements[0].display_mode is False
    assert ctx.replacements[1].display_mode is True
    assert ctx.replacements[1].omml == '<m:oMath>b</m:oMath>'
    assert len(ctx) == 2


def test_tokens_are_unique_within_a_document():
    ctx = MathContext()
    tokens = [ctx.register('<m:oMath/>') for _ in range(250)]
    assert len(set(tokens)) == len(tokens)
    assert all(re.fullmatch(r'__MATH_\d{6}__', token) for token in tokens)


def test_each_document_gets_its_own_counter():
    first, second = MathContext(), MathContext()
    first.register('<m:oMath/>')
    assert second.register('<m:oMath/>') == '__MATH_000001__'
    assert len(second) == 1
