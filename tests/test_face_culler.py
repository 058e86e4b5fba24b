"""
Tests for back-face culling of duplicate triangles.
"""

import os
import sys
import traceback

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from map_exporter.face_culler import cull_back_faces, cull_back_faces_with_stats


# Unit triangle in the XY plane: (0, 1, 2) faces +Z, (0, 2, 1) faces -Z
_XY_TRIANGLE = [0.0, 0.0, 0.0,
                1.0, 0.0, 0.0,
                0.0, 1.0, 0.0]

# Unit triangle in the XZ plane: (0, 1, 2) faces +Y
_XZ_TRIANGLE = [0.0, 0.0, 0.0,
                0.0, 0.0, 1.0,
                1.0, 0.0, 0.0]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PASSED = 0
_FAILED = 0
_ERRORS = []


def _test(name, fn):
    """Run a test function, track pass/fail."""
    global _PASSED, _FAILED
    try:
        fn()
        _PASSED += 1
        print("  PASS  {}".format(name))
    except Exception as e:
        _FAILED += 1
        _ERRORS.append((name, e))
        print("  FAIL  {} -- {}".format(name, e))
        traceback.print_exc()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

def test_opposite_pair_keeps_positive_z():
    """Of a front/back pair only the +Z facing triangle survives."""
    result = cull_back_faces([0, 2, 1, 0, 1, 2], _XY_TRIANGLE)
    assert result == [0, 1, 2], "Got {}".format(result)

    result = cull_back_faces([0, 1, 2, 0, 2, 1], _XY_TRIANGLE)
    assert result == [0, 1, 2], "Got {}".format(result)


def test_opposite_pair_prefers_positive_y():
    result = cull_back_faces([0, 2, 1, 0, 1, 2], _XZ_TRIANGLE)
    assert result == [0, 1, 2], "Got {}".format(result)


def test_same_winding_duplicates_are_both_kept():
    """A duplicate facing the same way is emitted at once, before candidates."""
    result, stats = cull_back_faces_with_stats([0, 1, 2, 1, 2, 0],
                                               _XY_TRIANGLE)
    assert result == [1, 2, 0, 0, 1, 2], "Got {}".format(result)
    assert stats.back_faces == 0
    assert stats.output_triangles == 2


def test_degenerate_triangle_dropped():
    vertices = [0.0, 0.0, 0.0,
                1.0, 0.0, 0.0,
                2.0, 0.0, 0.0]
    result, stats = cull_back_faces_with_stats([0, 1, 2], vertices)
    assert result == []
    assert stats.degenerate == 1


def test_malformed_triangle_passes_through():
    result, stats = cull_back_faces_with_stats([0, 1, 5, 0, 1, 2],
                                               _XY_TRIANGLE)
    assert result == [0, 1, 5, 0, 1, 2], "Got {}".format(result)
    assert stats.malformed == 1
    assert stats.input_triangles == 2


def test_negative_index_passes_through():
    result, stats = cull_back_faces_with_stats([-1, 1, 2, 0, 1, 2],
                                               _XY_TRIANGLE)
    assert result == [-1, 1, 2, 0, 1, 2], "Got {}".format(result)
    assert stats.malformed == 1
    assert stats.output_triangles == 2


def test_partial_trailing_triangle_kept():
    """Leftover indices are copied as-is ahead of the resolved candidates."""
    result, stats = cull_back_faces_with_stats([0, 1, 2, 0, 1],
                                               _XY_TRIANGLE)
    assert result == [0, 1, 0, 1, 2], "Got {}".format(result)
    assert stats.malformed == 1
    assert stats.input_triangles == 1

    assert cull_back_faces([2], _XY_TRIANGLE) == [2]


def test_distinct_triangles_untouched():
    vertices = _XY_TRIANGLE + [1.0, 1.0, 0.0]
    indices = [0, 1, 2, 1, 3, 2]
    result = cull_back_faces(indices, vertices)
    assert sorted(result) == sorted(indices)
    assert len(result) == 6


def test_empty_and_missing_input():
    assert cull_back_faces(None, _XY_TRIANGLE) == []
    assert cull_back_faces([], _XY_TRIANGLE) == []
    assert cull_back_faces([0, 1, 2], None) == [0, 1, 2]


def test_output_never_grows():
    indices = [0, 1, 2, 0, 2, 1, 1, 2, 0, 0, 1, 2]
    result = cull_back_faces(indices, _XY_TRIANGLE)
    assert len(result) % 3 == 0
    assert len(result) <= len(indices)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main():
    print("=" * 70)
    print("Face culler tests")
    print("=" * 70)

    _test("opposite pair keeps +Z", test_opposite_pair_keeps_positive_z)
    _test("opposite pair prefers +Y", test_opposite_pair_prefers_positive_y)
    _test("same winding duplicates kept",
          test_same_winding_duplicates_are_both_kept)
    _test("degenerate dropped", test_degenerate_triangle_dropped)
    _test("malformed passes through", test_malformed_triangle_passes_through)
    _test("negative index passes through", test_negative_index_passes_through)
    _test("partial trailing triangle", test_partial_trailing_triangle_kept)
    _test("distinct triangles untouched", test_distinct_triangles_untouched)
    _test("empty and missing input", test_empty_and_missing_input)
    _test("output never grows", test_output_never_grows)

    print("\n{} passed, {} failed".format(_PASSED, _FAILED))
    return 1 if _FAILED else 0


if __name__ == '__main__':
    sys.exit(main())
