import pytest

from mathdocx.omml_converter import OmmlConversionError, convert_mathml, strip_fence_operators

from conftest import omath, run

FRACTION_OMML = omath('<m:f><m:num>' + run('a') + '</m:num><m:den>' + run('b') + '</m:den></m:f>')
FLAT_OMML = omath(run('(') + run('a') + run('b') + run(')'))
BRACKETED_FRACTION = '<math><mo>(</mo><mfrac><mi>a</mi><mi>b</mi></mfrac><mo>)</mo></math>'


def test_strip_fence_operators():
    assert strip_fence_operators(BRACKETED_FRACTION) == '<math><mfrac><mi>a</mi><mi>b</mi></mfrac></math>'
    assert strip_fence_operators('<mo stretchy="true">&lsqb;</mo><mi>x</mi>') == '<mi>x</mi>'
    assert strip_fence_operators('<mo>+</mo>') == '<mo>+</mo>'


def test_first_attempt_is_returned_when_no_fraction_involved(canned_converter):
    converter = canned_converter(omath(run('x')))
    assert convert_mathml('<math><mi>x</mi></math>', converter) == omath(run('x'))
    assert len(converter.calls) == 1


def test_fraction_kept_on_first_attempt(canned_converter):
    converter = canned_converter(FRACTION_OMML)
    assert convert_mathml(BRACKETED_FRACTION, converter) == FRACTION_OMML
    assert len(converter.calls) == 1


def test_retries_without_fences_when_fraction_lost(canned_converter):
    converter = canned_converter(lambda mathml: FLAT_OMML if '<mo>(</mo>' in mathml else FRACTION_OMML)
    result = convert_mathml(BRACKETED_FRACTION, converter)

    assert '<m:f>' in result
    assert len(converter.calls) == 2
    assert '<mo>(</mo>' not in converter.calls[1]


def test_raises_when_every_attempt_loses_the_fraction(canned_converter):
    converter = canned_converter(FLAT_OMML)
    with pytest.raises(OmmlConversionError):
        convert_mathml(BRACKETED_FRACTION, converter)
    assert len(converter.calls) == 2


def test_converter_exception_becomes_conversion_error():
    def broken(mathml):
        raise ValueError("unsupported element")

    with pytest.raises(OmmlConversionError):
        convert_mathml('<math><mi>x</mi></math>', broken)


def test_empty_output_is_a_failure(canned_converter):
    with pytest.raises(OmmlConversionError):
        convert_mathml('<math><mi>x</mi></math>', canned_converter('   '))


def test_no_retry_without_fraction(canned_converter):
    converter = canned_converter('')
    with pytest.raises(OmmlConversionError):
        convert_mathml('<math><mo>(</mo><mi>x</mi><mo>)</mo></math>', converter)
    assert len(converter.calls) == 1
