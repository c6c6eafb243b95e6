"""Escape-time pixel kernel with smooth HSV coloring."""

import math

ESCAPE_RADIUS_SQ = 4.0
LOG2 = math.log(2)
BLACK = b"\x00\x00\x00"


def escape_time(cx, cy, max_iter):
    """Return ``(iterations, |z|^2)`` for the orbit of ``c = cx + i*cy``."""
    x = y = 0.0
    n = 0
    while x * x + y * y <= ESCAPE_RADIUS_SQ and n < max_iter:
        x, y = x * x - y * y + cx, 2 * x * y + cy
        n += 1
    return n, x * x + y * y


def smooth_iterations(cx, cy, max_iter):
    """Continuous escape count; ``max_iter`` for points inside the set."""
    n, modulus_sq = escape_time(cx, cy, max_iter)
    if n >= max_iter:
        return float(max_iter)
    log_zn = math.log(modulus_sq) / 2
    nu = math.log(log_zn / LOG2) / LOG2
    return n + 1 - nu


def hsv_to_rgb(hue):
    """HSV(hue, 1, 1) to an RGB byte triple, hue in degrees."""
    x = 1 - abs(math.fmod(hue / 60.0, 2) - 1)
    if hue < 60:
        r, g, b = 1, x, 0
    elif hue < 120:
        r, g, b = x, 1, 0
    elif hue < 180:
        r, g, b = 0, 1, x
    elif hue < 240:
        r, g, b = 0, x, 1
    elif hue < 300:
        r, g, b = x, 0, 1
    else:
        r, g, b = 1, 0, x
    return bytes((int(r * 255), int(g * 255), int(b * 255)))


def iteration_to_color(smoothed, max_iter):
    if smoothed >= max_iter:
        return BLACK
    if not math.isfinite(smoothed):
        return hsv_to_rgb(0.0)
    # Orbits that blow up on the first steps can push the estimate below zero
    t = max(smoothed / max_iter, 0.0)
    return hsv_to_rgb(360.0 * t)


def color(cx, cy, max_iter):
    smoothed = smooth_iterations(cx, cy, max_iter)
    return smoothed, iteration_to_color(smoothed, max_iter)


def pixel_to_complex(pixel, dimension, center, scale):
    return center + (pixel - dimension // 2) * scale


def render_rows(request, start_row, row_count):
    """Render ``row_count`` rows of ``request`` starting at ``start_row``.

    Pixels are emitted row-major, left to right, three bytes (R, G, B) each.
    """
    width, height = request.width, request.height
    scale = request.scale
    buffer = bytearray(3 * width * row_count)
    index = 0
    for y in range(start_row, start_row + row_count):
        cy = pixel_to_complex(y, height, request.center_y, scale)
        for x in range(width):
            cx = pixel_to_complex(x, width, request.center_x, scale)
            _, rgb = color(cx, cy, request.max_iterations)
            buffer[index:index + 3] = rgb
            index += 3
    return bytes(buffer)
