"""
datasync: motor de transformación y reconciliación de datos LMS.

Consume eventos de dominio (usuarios, cohortes, asistencia, proyectos) y filas
de origen para backfill, y los deja en el esquema relacional de destino.
"""

__version__ = "1.0.0"
