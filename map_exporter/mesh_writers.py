"""
Terrain mesh writers: Wavefront OBJ and glTF 2.0 binary (.glb).

Both writers take the same TerrainMesh: flat vertex/normal/uv arrays plus
one triangle index list per named group (one group per MCNK chunk).
"""

import logging
import os

import numpy as np
import pygltflib

log = logging.getLogger(__name__)


class TerrainMesh(object):
    """Flat vertex data plus per-group triangle indices."""

    def __init__(self):
        self.vertices = []      # [x, y, z, x, y, z, ...]
        self.normals = []       # [x, y, z, ...]
        self.uvs = []           # [u, v, ...]
        self.groups = []        # [(name, [i0, i1, i2, ...]), ...]

    @property
    def vertex_count(self):
        return len(self.vertices) // 3

    @property
    def triangle_count(self):
        return sum(len(indices) for _name, indices in self.groups) // 3


def _ensure_parent(path):
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


# ---------------------------------------------------------------------------
# OBJ
# ---------------------------------------------------------------------------

class OBJWriter(object):
    """Writes a TerrainMesh as a Wavefront OBJ file."""

    def __init__(self, output_path):
        self.output_path = output_path

    def write(self, mesh, header=None):
        """
        Args:
            mesh: TerrainMesh to write.
            header: Optional list of comment lines for the file header.
        """
        _ensure_parent(self.output_path)

        with open(self.output_path, 'w', encoding='utf-8') as f:
            for line in header or ():
                f.write("# {}\n".format(line))

            v = mesh.vertices
            for i in range(0, len(v), 3):
                f.write("v {:.6f} {:.6f} {:.6f}\n".format(v[i], v[i + 1], v[i + 2]))

            n = mesh.normals
            for i in range(0, len(n), 3):
                f.write("vn {:.6f} {:.6f} {:.6f}\n".format(n[i], n[i + 1], n[i + 2]))

            uv = mesh.uvs
            for i in range(0, len(uv), 2):
                f.write("vt {:.6f} {:.6f}\n".format(uv[i], uv[i + 1]))

            has_normals = bool(n)
            has_uvs = bool(uv)
            for name, indices in mesh.groups:
                if not indices:
                    continue
                f.write("g {}\n".format(name))
                for i in range(0, len(indices), 3):
                    f.write("f {} {} {}\n".format(
                        *(_obj_ref(idx + 1, has_uvs, has_normals)
                          for idx in indices[i:i + 3])))

        log.debug("Wrote OBJ: %s (%d vertices, %d triangles)",
                  self.output_path, mesh.vertex_count, mesh.triangle_count)


def _obj_ref(idx, has_uvs, has_normals):
    if has_uvs and has_normals:
        return "{0}/{0}/{0}".format(idx)
    if has_normals:
        return "{0}//{0}".format(idx)
    if has_uvs:
        return "{0}/{0}".format(idx)
    return str(idx)


# ---------------------------------------------------------------------------
# glTF
# ---------------------------------------------------------------------------

class GLBWriter(object):
    """
    Writes a TerrainMesh as a glTF 2.0 binary.

    All groups share one set of vertex attributes; each group becomes its
    own primitive of a single mesh node.
    """

    def __init__(self, output_path):
        self.output_path = output_path

    def write(self, mesh, extras=None):
        """
        Args:
            mesh: TerrainMesh to write.
            extras: Optional dict stored on the scene node.
        """
        gltf = pygltflib.GLTF2(
            asset=pygltflib.Asset(version="2.0", generator="map-exporter"),
            scene=0,
            scenes=[pygltflib.Scene(nodes=[0])],
        )
        blob = bytearray()

        attributes = pygltflib.Attributes()

        positions = np.asarray(mesh.vertices, dtype='<f4').reshape((-1, 3))
        attributes.POSITION = self._add_accessor(
            gltf, blob, positions, pygltflib.VEC3, pygltflib.ARRAY_BUFFER,
            with_bounds=True)

        if mesh.normals:
            normals = np.asarray(mesh.normals, dtype='<f4').reshape((-1, 3))
            attributes.NORMAL = self._add_accessor(
                gltf, blob, normals, pygltflib.VEC3, pygltflib.ARRAY_BUFFER)

        if mesh.uvs:
            uvs = np.asarray(mesh.uvs, dtype='<f4').reshape((-1, 2))
            attributes.TEXCOORD_0 = self._add_accessor(
                gltf, blob, uvs, pygltflib.VEC2, pygltflib.ARRAY_BUFFER)

        primitives = []
        for name, indices in mesh.groups:
            if not indices:
                continue
            index_array = np.asarray(indices, dtype='<u4')
            idx_acc = self._add_accessor(
                gltf, blob, index_array, pygltflib.SCALAR,
                pygltflib.ELEMENT_ARRAY_BUFFER)
            primitives.append(pygltflib.Primitive(
                attributes=attributes,
                indices=idx_acc,
                mode=pygltflib.TRIANGLES,
                extras={'name': name},
            ))

        node_name = os.path.splitext(os.path.basename(self.output_path))[0]
        gltf.meshes.append(pygltflib.Mesh(name=node_name, primitives=primitives))
        gltf.nodes.append(pygltflib.Node(name=node_name, mesh=0,
                                         extras=extras or {}))

        gltf.buffers = [pygltflib.Buffer(byteLength=len(blob))]
        gltf.set_binary_blob(bytes(blob))

        _ensure_parent(self.output_path)
        gltf.save_binary(self.output_path)

        log.debug("Wrote glTF binary: %s (%d bytes)",
                  self.output_path, len(blob))

    @staticmethod
    def _add_accessor(gltf, blob, array, accessor_type, target,
                      with_bounds=False):
        """Append *array* to the blob and register a view + accessor."""
        offset = len(blob)
        blob.extend(array.tobytes())
        length = len(blob) - offset
        while len(blob) % 4 != 0:
            blob.append(0)

        view_idx = len(gltf.bufferViews)
        gltf.bufferViews.append(pygltflib.BufferView(
            buffer=0,
            byteOffset=offset,
            byteLength=length,
            target=target,
        ))

        if array.dtype.kind == 'u':
            component = pygltflib.UNSIGNED_INT
        else:
            component = pygltflib.FLOAT

        accessor = pygltflib.Accessor(
            bufferView=view_idx,
            componentType=component,
            count=len(array),
            type=accessor_type,
        )
        if with_bounds and len(array):
            accessor.min = [float(c) for c in array.min(axis=0)]
            accessor.max = [float(c) for c in array.max(axis=0)]
        elif accessor_type == pygltflib.SCALAR and len(array):
            accessor.min = [int(array.min())]
            accessor.max = [int(array.max())]

        acc_idx = len(gltf.accessors)
        gltf.accessors.append(accessor)
        return acc_idx
