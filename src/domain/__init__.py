"""Domain layer - business models, projects and style profiles."""
from domain.models import (
    AnnotationLayer,
    BoundaryFeature,
    Geometry,
    Point2,
    ProjectState,
    RoadClass,
    RoadFeature,
    SelectionCollection,
    StyleSettings,
    ViewState,
)
from domain.profiles import (
    delete_profile,
    ensure_profiles_dir,
    list_profiles,
    load_profile,
    save_profile,
)
from domain.project import load_or_new_project, load_project, save_project

__all__ = [
    'AnnotationLayer',
    'BoundaryFeature',
    'Geometry',
    'Point2',
    'ProjectState',
    'RoadClass',
    'RoadFeature',
    'SelectionCollection',
    'StyleSettings',
    'ViewState',
    'delete_profile',
    'ensure_profiles_dir',
    'list_profiles',
    'load_or_new_project',
    'load_profile',
    'load_project',
    'save_profile',
    'save_project',
]
