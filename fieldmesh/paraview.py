"""
ParaView VTK XML export of meshes.

A mesh is written as a single-piece UnstructuredGrid. Points carry their
coordinate derivatives, the edge kind number of boundary points and, if
available, the point dielectric. Cells carry the material index.
"""

import logging
from pathlib import Path
from typing import Iterable

import lxml.etree
from lxml.etree import Element, SubElement

from . import mesh

log = logging.getLogger(__name__)

VTK_TRIANGLE = 5


def create_data_array(
    parent: Element,
    data_type: str,
    values: Iterable[int | float],
    name: str | None = None,
    number_of_components: int | None = None
) -> Element:
    """Create a DataArray element with specified type and values.

    Args:
        parent: Parent element to attach the DataArray to
        data_type: VTK data type (e.g., "Float64", "Int32", "UInt8")
        values: Numeric values to store in the array
        name: Optional name attribute for the DataArray
        number_of_components: Optional NumberOfComponents attribute

    Returns:
        Created DataArray element
    """
    data_array = SubElement(parent, "DataArray")
    data_array.set("type", data_type)
    data_array.set("format", "ascii")
    if name is not None:
        data_array.set("Name", name)
    if number_of_components is not None:
        data_array.set("NumberOfComponents", str(number_of_components))
    data_array.text = " ".join(str(value) for value in values)
    return data_array


def create_vtk_root() -> Element:
    """Create the root VTKFile element with standard attributes.

    Returns:
        Root VTKFile element configured for UnstructuredGrid format
    """
    root = Element("VTKFile")
    root.set("type", "UnstructuredGrid")
    root.set("version", "0.1")
    root.set("byte_order", "LittleEndian")
    return root


def _edge_kind_code(point: mesh.MeshPoint) -> int:
    # 0 interior or ordinary boundary, -1 absorbing, n for port n
    kind = point.edge.kind[0]
    if kind.abc:
        return -1
    return kind.port


def create_point_data(mesh_obj: mesh.Mesh) -> Element:
    """Create PointData with coordinate derivatives, edge kinds and dielectric.

    Args:
        mesh_obj: Valid mesh whose points are written

    Returns:
        PointData element, with epsilon arrays only if the mesh has a dielectric
    """
    point_data = Element("PointData")
    point_data.set("Vectors", "derivative")

    derivatives = []
    for p in mesh_obj.points:
        derivatives.extend([p.x.derivative, p.y.derivative, 0.0])
    create_data_array(point_data, "Float64", derivatives, name="derivative", number_of_components=3)

    create_data_array(
        point_data, "Int32",
        (_edge_kind_code(p) for p in mesh_obj.points),
        name="edge_kind",
    )

    if mesh_obj.dielectric is not None:
        point_data.set("Scalars", "epsilon_real")
        create_data_array(point_data, "Float64", mesh_obj.dielectric.real, name="epsilon_real")
        create_data_array(point_data, "Float64", mesh_obj.dielectric.imag, name="epsilon_imag")

    return point_data


def create_cell_data(mesh_obj: mesh.Mesh) -> Element:
    cell_data = Element("CellData")
    cell_data.set("Scalars", "material")
    create_data_array(cell_data, "Int32", (t.material for t in mesh_obj.triangles), name="material")
    return cell_data


def create_points(mesh_obj: mesh.Mesh) -> Element:
    points = Element("Points")
    coordinates = []
    for p in mesh_obj.points:
        coordinates.extend([p.x.value, p.y.value, 0.0])
    create_data_array(points, "Float64", coordinates, number_of_components=3)
    return points


def create_cells(mesh_obj: mesh.Mesh) -> Element:
    """Create the Cells element describing the triangle connectivity.

    Returns:
        Cells element with connectivity, offsets and types arrays
    """
    cells = Element("Cells")

    connectivity_values = []
    for tri in mesh_obj.triangles:
        connectivity_values.extend(tri.index)
    create_data_array(cells, "Int32", connectivity_values, name="connectivity")

    offset_values = [3 * (i + 1) for i in range(len(mesh_obj.triangles))]
    create_data_array(cells, "Int32", offset_values, name="offsets")

    create_data_array(cells, "UInt8", [VTK_TRIANGLE] * len(mesh_obj.triangles), name="types")
    return cells


def create_piece(mesh_obj: mesh.Mesh) -> Element:
    piece = Element("Piece")
    piece.set("NumberOfPoints", str(mesh_obj.num_points))
    piece.set("NumberOfCells", str(mesh_obj.num_triangles))
    piece.append(create_point_data(mesh_obj))
    piece.append(create_cell_data(mesh_obj))
    piece.append(create_points(mesh_obj))
    piece.append(create_cells(mesh_obj))
    return piece


def export_mesh(mesh_obj: mesh.Mesh, output_file: Path) -> None:
    """Write a valid mesh to a .vtu file.

    Raises:
        ValueError: If the mesh is not valid
    """
    if not mesh_obj.valid:
        raise ValueError(f"Can not export an invalid mesh: {mesh_obj.error}")

    log.info(f"Exporting mesh to ParaView format: {output_file}")
    root = create_vtk_root()
    unstructured_grid = SubElement(root, "UnstructuredGrid")
    unstructured_grid.append(create_piece(mesh_obj))

    Path(output_file).parent.mkdir(parents=True, exist_ok=True)
    tree = lxml.etree.ElementTree(root)
    tree.write(
        str(output_file),
        xml_declaration=True,
        encoding="utf-8",
        pretty_print=True
    )
    log.info(f"Exported {mesh_obj.num_points} points and {mesh_obj.num_triangles} triangles")
