#
# Bit-exact decomposition, reconstruction and scaling of IEEE-754 double precision values
#
# (c) The doublebits authors.  All rights reserved.
#

import logging
from math import isinf, isnan, nan, sqrt
from struct import Struct
from typing import NamedTuple

import attr

__all__ = ('DoubleConsts', 'DOUBLE', 'NumberParts',
           'MIN_EXPONENT', 'MAX_EXPONENT', 'EXP_BIAS', 'SIGNIFICAND_WIDTH',
           'MIN_SUB_EXPONENT', 'MAX_SCALE', 'SIGN_BIT_MASK', 'EXP_BIT_MASK',
           'SIGNIF_BIT_MASK', 'MIN_NORMAL', 'MAX_VALUE', 'MIN_VALUE',
           'host_endianness', 'is_little_endian', 'is_big_endian',
           'machine_epsilon', 'sqrt_epsilon',
           'double_to_bits', 'bits_to_double', 'sign_bit', 'exponent_field',
           'significand_field', 'set_exponent_field', 'set_sign_bit',
           'make_zero', 'make_infinity',
           'get_number_parts', 'from_number_parts', 'copy_sign', 'get_exponent',
           'float_abs', 'scalb', 'power_of_two', 'float_compare', 'float_equals',
           'sgn', 'horner')


logger = logging.getLogger(__name__)

pack_double = Struct('=d').pack
unpack_double = Struct('=d').unpack


#
# Bit layout
#

# Byte order is fixed once at import; field positions below are in terms of the 64-bit
# word, never of byte offsets.
host_endianness = 'little' if pack_double(-0.0)[-1] == 0x80 else 'big'
is_little_endian = host_endianness == 'little'
is_big_endian = not is_little_endian


def double_to_bits(value):
    '''Return the 64-bit encoding of a float as an unsigned integer.  Bit 63 is the sign,
    bits 62-52 the biased exponent and bits 51-0 the significand field.'''
    return int.from_bytes(pack_double(value), host_endianness)


def bits_to_double(bits):
    '''Return the float with the given 64-bit encoding.'''
    if not isinstance(bits, int):
        raise TypeError('bits_to_double requires an integer')
    if not 0 <= bits < 1 << 64:
        raise ValueError(f'bit pattern {bits:#x} is not 64 bits wide')
    return unpack_double(bits.to_bytes(8, host_endianness))[0]


@attr.s(slots=True, frozen=True)
class DoubleConsts:
    '''The limits of the binary64 format.  Only instantiate through from_layout().'''

    SIGNIFICAND_WIDTH = attr.ib()
    MIN_EXPONENT = attr.ib()
    MAX_EXPONENT = attr.ib()
    EXP_BIAS = attr.ib()
    MIN_SUB_EXPONENT = attr.ib()
    # Beyond this magnitude no scale factor can bring a finite non-zero value back to
    # the finite non-zero range.
    MAX_SCALE = attr.ib()
    SIGN_BIT_MASK = attr.ib()
    EXP_BIT_MASK = attr.ib()
    SIGNIF_BIT_MASK = attr.ib()
    MIN_NORMAL = attr.ib()
    MAX_VALUE = attr.ib()
    MIN_VALUE = attr.ib()

    @classmethod
    def from_layout(cls, precision, e_width):
        '''Derive the table from the precision (including the implicit integer bit) and the
        exponent field width.'''
        if precision + e_width != 64:
            raise ValueError('only the 64-bit layout is supported')
        e_max = (1 << (e_width - 1)) - 1
        e_min = 1 - e_max
        sig_bits = precision - 1
        signif_mask = (1 << sig_bits) - 1
        exp_mask = ((1 << e_width) - 1) << sig_bits
        return cls(
            SIGNIFICAND_WIDTH=precision,
            MIN_EXPONENT=e_min,
            MAX_EXPONENT=e_max,
            EXP_BIAS=e_max,
            MIN_SUB_EXPONENT=e_min - sig_bits,
            MAX_SCALE=e_max - e_min + precision,
            SIGN_BIT_MASK=1 << 63,
            EXP_BIT_MASK=exp_mask,
            SIGNIF_BIT_MASK=signif_mask,
            MIN_NORMAL=bits_to_double(1 << sig_bits),
            MAX_VALUE=bits_to_double((exp_mask - (1 << sig_bits)) | signif_mask),
            MIN_VALUE=bits_to_double(1),
        )


DOUBLE = DoubleConsts.from_layout(53, 11)

SIGNIFICAND_WIDTH = DOUBLE.SIGNIFICAND_WIDTH
MIN_EXPONENT = DOUBLE.MIN_EXPONENT
MAX_EXPONENT = DOUBLE.MAX_EXPONENT
EXP_BIAS = DOUBLE.EXP_BIAS
MIN_SUB_EXPONENT = DOUBLE.MIN_SUB_EXPONENT
MAX_SCALE = DOUBLE.MAX_SCALE
SIGN_BIT_MASK = DOUBLE.SIGN_BIT_MASK
EXP_BIT_MASK = DOUBLE.EXP_BIT_MASK
SIGNIF_BIT_MASK = DOUBLE.SIGNIF_BIT_MASK
MIN_NORMAL = DOUBLE.MIN_NORMAL
MAX_VALUE = DOUBLE.MAX_VALUE
MIN_VALUE = DOUBLE.MIN_VALUE

_sig_bits = SIGNIFICAND_WIDTH - 1
_int_bit = 1 << _sig_bits
_e_field_max = EXP_BIT_MASK >> _sig_bits


def sign_bit(value):
    '''Return 1 if the sign bit of value is set, otherwise 0.'''
    return double_to_bits(value) >> 63


def exponent_field(value):
    '''Return the 11-bit biased exponent field.'''
    return (double_to_bits(value) & EXP_BIT_MASK) >> _sig_bits


def significand_field(value):
    '''Return the 52-bit significand field, without the integer bit.'''
    return double_to_bits(value) & SIGNIF_BIT_MASK


def set_exponent_field(value, field):
    '''Return a copy of value with its biased exponent field replaced.'''
    if not isinstance(field, int):
        raise TypeError('exponent field must be an integer')
    if not 0 <= field <= _e_field_max:
        raise ValueError(f'biased exponent {field:,d} out of range')
    bits = double_to_bits(value) & ~EXP_BIT_MASK
    return bits_to_double(bits | (field << _sig_bits))


def set_sign_bit(value, sign):
    '''Return a copy of value, including NaNs, with the sign bit set if sign is true.'''
    bits = double_to_bits(value) & ~SIGN_BIT_MASK
    if sign:
        bits |= SIGN_BIT_MASK
    return bits_to_double(bits)


def make_zero(sign):
    '''Return a zero of the given sign.'''
    return bits_to_double(SIGN_BIT_MASK if sign else 0)


def make_infinity(sign):
    '''Return an infinity of the given sign.'''
    return bits_to_double((SIGN_BIT_MASK if sign else 0) | EXP_BIT_MASK)


def to_double(value):
    '''Return value as a float.  Integers are converted; other types are a caller bug.'''
    if isinstance(value, float):
        return value
    if isinstance(value, int):
        return float(value)
    raise TypeError(f'expected a float or an int, not {type(value).__name__}')


#
# Decomposition and reconstruction
#

class NumberParts(NamedTuple):
    '''A finite value x is (-1)^sign * 2^exponent * significand exactly.

    Normal and subnormal values have a significand in [1, 2).  Zeroes have a significand
    of zero and an exponent of MIN_EXPONENT - 1.  Infinities and NaNs have an exponent of
    MAX_EXPONENT + 1 and their significand field under the bias exponent.
    '''
    sign: int
    exponent: int
    significand: float


def get_number_parts(x):
    '''Decompose x into a NumberParts tuple.'''
    bits = double_to_bits(to_double(x))
    sign = bits >> 63
    e_field = (bits & EXP_BIT_MASK) >> _sig_bits
    fraction = bits & SIGNIF_BIT_MASK

    if e_field == 0:
        if not fraction:
            return NumberParts(sign, MIN_EXPONENT - 1, 0.0)
        # Subnormal: normalize so the leading set bit becomes the integer bit
        shift = SIGNIFICAND_WIDTH - fraction.bit_length()
        exponent = MIN_EXPONENT - shift
        fraction = (fraction << shift) & SIGNIF_BIT_MASK
    else:
        exponent = e_field - EXP_BIAS

    significand = bits_to_double((EXP_BIAS << _sig_bits) | fraction)
    return NumberParts(sign, exponent, significand)


def from_number_parts(sign, significand, exponent):
    '''Return (-1)^sign * 2^exponent * significand, where only the significand field of
    significand is used (its integer bit is taken to be set) unless it is zero.

    Exponents above MAX_EXPONENT give an infinity.  Exponents below MIN_EXPONENT give a
    subnormal or zero, rounded once to nearest with ties to even.
    '''
    if not isinstance(exponent, int):
        raise TypeError('exponent must be an integer')
    significand = to_double(significand)
    sign_bits = SIGN_BIT_MASK if sign else 0

    if exponent > MAX_EXPONENT:
        return make_infinity(sign)
    if significand == 0:
        return make_zero(sign)

    fraction = significand_field(significand)
    if exponent >= MIN_EXPONENT:
        return bits_to_double(sign_bits | ((exponent + EXP_BIAS) << _sig_bits) | fraction)

    # A carry out of the top of the subnormal range lands on the exponent field as 1,
    # which is MIN_NORMAL.
    bits = round_shift_right(fraction | _int_bit, MIN_EXPONENT - exponent)
    return bits_to_double(sign_bits | bits)


def copy_sign(magnitude, sign):
    '''Return magnitude with the sign bit of sign.'''
    magnitude = to_double(magnitude)
    target = sign_bit(to_double(sign))
    if sign_bit(magnitude) == target:
        return magnitude
    if isinf(magnitude) or isnan(magnitude):
        # Keep NaN payloads intact
        return set_sign_bit(magnitude, target)
    parts = get_number_parts(magnitude)
    return from_number_parts(target, parts.significand, parts.exponent)


def get_exponent(x):
    '''Return the unbiased exponent of x as given by get_number_parts().'''
    return get_number_parts(x).exponent


def float_abs(x):
    '''Return x with the sign bit cleared, including for zeroes and NaNs.'''
    return set_sign_bit(to_double(x), False)


#
# Scaling
#

def scalb(d, scale_factor):
    '''Return d * 2^scale_factor rounded as if by a single correctly-rounded multiply.

    The result is exact when its exponent lies in [MIN_EXPONENT, MAX_EXPONENT].  Larger
    exponents give an infinity.  Subnormal results may lose precision, so
    scalb(scalb(x, n), -n) need not equal x.  When the result is not a NaN it has the
    sign of d.

    NaNs, zeroes and infinities are returned unchanged.
    '''
    d = to_double(d)
    if not isinstance(scale_factor, int):
        raise TypeError('scalb requires an integer scale factor')

    if isnan(d) or d == 0 or isinf(d):
        return d
    if scale_factor < -MAX_SCALE:
        logger.debug('scalb(%r, %d) underflows to zero', d, scale_factor)
        return make_zero(sign_bit(d))
    if scale_factor > MAX_SCALE - 1:
        logger.debug('scalb(%r, %d) overflows to infinity', d, scale_factor)
        return make_infinity(sign_bit(d))

    sign, exponent, significand = get_number_parts(d)
    return from_number_parts(sign, significand, exponent + scale_factor)


def power_of_two(n):
    '''Return 2^n without doing any multiplication.'''
    return from_number_parts(0, 1.0, n)


machine_epsilon = power_of_two(1 - SIGNIFICAND_WIDTH)
sqrt_epsilon = sqrt(machine_epsilon)


#
# Comparison
#

def float_compare(x, y, eps=sqrt_epsilon):
    '''Compare with a tolerance relative to the magnitude of the operands (Knuth 4.2.2).

    Return -1 if x < y, +1 if x > y and 0 if they are "equal", i.e. differ by no more than
    eps scaled to the binade of the larger operand.  A NaN operand orders neither above
    nor below the other, so gives 0.
    '''
    x = to_double(x)
    y = to_double(y)
    eps = to_double(eps)

    exponent = get_exponent(x if float_abs(x) > float_abs(y) else y)
    delta = scalb(eps, exponent)
    diff = x - y
    if diff > delta:
        return 1
    if diff < -delta:
        return -1
    return 0


def float_equals(x, y, eps=sqrt_epsilon):
    '''Return True if x and y are equal within tolerance.'''
    return float_compare(x, y, eps) == 0


#
# Helpers for numerical routines
#

def sgn(x):
    '''Return -1, 0 or 1 according to the sign of x, or NaN if x is a NaN.  Zeroes of both
    signs give 0.'''
    x = to_double(x)
    if x < 0:
        return -1
    if x > 0:
        return 1
    if x == 0:
        return 0
    return nan


def horner(coefficients):
    '''Return a function evaluating the polynomial with the given coefficients, constant
    term first, by Horner's method.'''
    coefficients = [to_double(coefficient) for coefficient in coefficients]

    def evaluate(x):
        if not coefficients:
            return 0.0
        result = coefficients[-1]
        for coefficient in reversed(coefficients[:-1]):
            result = coefficient + x * result
        return result

    return evaluate


#
# Useful internal helper routines
#

def round_shift_right(significand, bits):
    '''Return the significand shifted right a positive number of bits, rounded to nearest
    with ties to even.'''
    # Past this every bit is lost and the result is zero
    bits = min(bits, significand.bit_length() + 2)
    half = 1 << (bits - 1)
    lost = significand & ((half << 1) - 1)
    result = significand >> bits
    if lost > half or (lost == half and result & 1):
        result += 1
    return result


logger.debug('host byte order is %s; machine epsilon %r', host_endianness, machine_epsilon)
