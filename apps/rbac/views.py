"""
RBAC REST API views.

Implements endpoints for:
- Permission registry (list, create, detail, check, check-bulk)
- Role management (CRUD, duplicate, permission sync, matrix)
- User access (effective permissions, grant/revoke, roles, lifecycle, super admin)
- Invitations (list, create, revoke, resend, public accept)
- Audit log viewing, export, cleanup and statistics
"""
from django.conf import settings
from django.contrib.auth import login
from django.db.models import Q
from django.http import StreamingHttpResponse
from django.utils.decorators import method_decorator
from django_ratelimit.decorators import ratelimit
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.exceptions import AuthorizationError, InvitationStateError, NotFoundError, ValidationError
from apps.core.logging import SecurityLogger
from apps.core.middleware.request_tracking import get_client_ip
from apps.core.permissions import HasAbility, requires_ability
from apps.rbac import abilities
from apps.rbac.models import Permission, Role, UserInvitation
from apps.rbac.serializers import (
    AuditCleanupSerializer, AuditLogSerializer, BulkPermissionCheckSerializer,
    BulkPermissionUpdateSerializer, CopyPermissionsSerializer, GrantValidationSerializer,
    InvitationAcceptSerializer, InvitationCreateSerializer, InvitationPublicSerializer,
    InvitationRevokeSerializer, PermissionCheckSerializer, PermissionCreateSerializer,
    PermissionMatrixSerializer, PermissionNamesSerializer, PermissionSerializer,
    PermissionUpdateSerializer, RoleAssignSerializer, RoleCreateSerializer, RoleDetailSerializer,
    RoleDuplicateSerializer, RoleSerializer, RoleUpdateSerializer, SuperAdminChangeSerializer,
    SuperAdminGrantSerializer, UserInvitationSerializer, UserSerializer,
)
from apps.rbac.services import (
    AccessControlGuard, AuditService, HierarchyResolver, InvitationService,
    RegistryService, SuperAdminService, UserAccessService,
)


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


def _get_or_404(queryset, pk, label):
    obj = queryset.filter(pk=pk).first()
    if obj is None:
        raise NotFoundError(f'{label} not found.', {'id': str(pk)})
    return obj


def _int_param(request, name, default, maximum=None):
    value = request.query_params.get(name, default)
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer.', {name: ['Must be an integer']})
    if value < 1:
        raise ValidationError(f'{name} must be positive.', {name: ['Must be positive']})
    return min(value, maximum) if maximum else value


def _validation_response(validation):
    """200 when anything was applied or nothing was rejected, 422 when every name was rejected."""
    data = GrantValidationSerializer(validation.as_dict()).data
    if validation.errors and not validation.valid:
        return Response(data, status=status.HTTP_422_UNPROCESSABLE_ENTITY)
    return Response(data)


# ===== PERMISSIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permissions',
        description='''
List registered permissions.

**Required permission:** `permissions.viewAny`

Filters: `search` (name or display name), `resource`, `scope`
(`plant`, `area`, `sector`, `asset` or `global`).
        ''',
        parameters=[
            OpenApiParameter('search', OpenApiTypes.STR, description='Match on name or display name'),
            OpenApiParameter('resource', OpenApiTypes.STR, description='Resource segment'),
            OpenApiParameter('scope', OpenApiTypes.STR, description='Scope or "global"'),
        ],
        responses={200: PermissionSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Create permission',
        description='''
Register a permission. Names are `resource.action` or
`resource.action.scope.scope_id`.

**Required permission:** `permissions.manage`
        ''',
        request=PermissionCreateSerializer,
        responses={201: PermissionSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Scoped permission',
                value={'name': 'areas.manage.plant.10', 'display_name': 'Manage areas of plant 10'},
                request_only=True,
            )
        ],
    ),
)
class PermissionListView(APIView):
    """
    GET /v1/rbac/permissions
    POST /v1/rbac/permissions
    """

    permission_classes = [HasAbility]
    pagination_class = StandardResultsSetPagination

    @requires_ability(abilities.PERMISSIONS_VIEW)
    def get(self, request):
        permissions = Permission.objects.all()

        search = request.query_params.get('search')
        if search:
            permissions = permissions.filter(Q(name__icontains=search) | Q(display_name__icontains=search))

        resource = request.query_params.get('resource')
        if resource:
            permissions = permissions.filter(resource=resource)

        scope = request.query_params.get('scope')
        if scope == 'global':
            permissions = permissions.global_permissions()
        elif scope:
            permissions = permissions.filter(scope=scope)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(permissions, request)
        serializer = PermissionSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    @requires_ability(abilities.PERMISSIONS_MANAGE)
    def post(self, request):
        serializer = PermissionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        permission = RegistryService.create_permission(
            actor=request.user,
            request=request,
            **serializer.validated_data
        )
        return Response(PermissionSerializer(permission).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Permissions'], summary='Get permission',
                      responses={200: PermissionSerializer, 404: OpenApiTypes.OBJECT}),
    patch=extend_schema(tags=['RBAC - Permissions'], summary='Update permission',
                        description='Update display name, description or sort order. The name is immutable.',
                        request=PermissionUpdateSerializer, responses={200: PermissionSerializer}),
    delete=extend_schema(tags=['RBAC - Permissions'], summary='Delete permission',
                         description='Blocked while the permission is attached to any role or user.',
                         responses={204: None, 400: OpenApiTypes.OBJECT}),
)
class PermissionDetailView(APIView):
    """
    GET/PATCH/DELETE /v1/rbac/permissions/{id}
    """

    permission_classes = [HasAbility]

    @requires_ability(abilities.PERMISSIONS_VIEW)
    def get(self, request, permission_id):
        permission = _get_or_404(Permission.objects, permission_id, 'Permission')
        return Response(PermissionSerializer(permission).data)

    @requires_ability(abilities.PERMISSIONS_MANAGE)
    def patch(self, request, permission_id):
        permission = _get_or_404(Permission.objects, permission_id, 'Permission')
        serializer = PermissionUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        permission = RegistryService.update_permission(
            permission, actor=request.user, request=request, **serializer.validated_data
        )
        return Response(PermissionSerializer(permission).data)

    @requires_ability(abilities.PERMISSIONS_MANAGE)
    def delete(self, request, permission_id):
        permission = _get_or_404(Permission.objects, permission_id, 'Permission')
        RegistryService.delete_permission(permission, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Check a permission',
        description='''
Answer whether the caller holds a permission, optionally on a hierarchy
node (`scope` + `scope_id`), in which case grants on the node's ancestors
count too.

**No permission required** - callers can always check themselves.
        ''',
        parameters=[
            OpenApiParameter('permission', OpenApiTypes.STR, required=True),
            OpenApiParameter('scope', OpenApiTypes.STR),
            OpenApiParameter('scope_id', OpenApiTypes.INT),
        ],
        responses={200: OpenApiTypes.OBJECT},
    )
)
class PermissionCheckView(APIView):
    """
    GET /v1/rbac/permissions/check
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        serializer = PermissionCheckSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)

        ability = serializer.validated_data['permission']
        resource = None
        if 'scope' in serializer.validated_data:
            resource = (serializer.validated_data['scope'], serializer.validated_data['scope_id'])

        return Response({
            'permission': ability,
            'allowed': AccessControlGuard.allows(request.user, ability, resource),
        })


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Check several permissions',
        request=BulkPermissionCheckSerializer,
        responses={200: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Success Response',
                value={'permissions': {'users.view': True, 'roles.delete': False}},
                response_only=True,
            )
        ],
    )
)
class PermissionBulkCheckView(APIView):
    """
    POST /v1/rbac/permissions/check-bulk
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = BulkPermissionCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        effective = HierarchyResolver.resolve_effective(request.user)
        results = {
            name: HierarchyResolver.check(request.user, name, effective=effective)
            for name in serializer.validated_data['permissions']
        }
        return Response({'permissions': results})


# ===== ROLES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='''
List roles. Use `type=system` or `type=custom` to filter.

**Required permission:** `roles.viewAny`
        ''',
        parameters=[OpenApiParameter('type', OpenApiTypes.STR, enum=['system', 'custom'])],
        responses={200: RoleSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create role',
        description='**Required permission:** `roles.create`',
        request=RoleCreateSerializer,
        responses={201: RoleDetailSerializer, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class RoleListView(APIView):
    """
    GET /v1/rbac/roles
    POST /v1/rbac/roles
    """

    permission_classes = [HasAbility]
    pagination_class = StandardResultsSetPagination

    @requires_ability(abilities.ROLES_VIEW)
    def get(self, request):
        roles = Role.objects.order_by('-is_system', 'name')

        role_type = request.query_params.get('type')
        if role_type == 'system':
            roles = roles.filter(is_system=True)
        elif role_type == 'custom':
            roles = roles.filter(is_system=False)

        paginator = self.pagination_class()
        page = paginator.paginate_queryset(roles, request)
        serializer = RoleSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    @requires_ability(abilities.ROLES_CREATE)
    def post(self, request):
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = RegistryService.create_role(
            name=serializer.validated_data['name'],
            description=serializer.validated_data.get('description', ''),
            permission_ids=serializer.validated_data.get('permission_ids', []),
            actor=request.user,
            request=request,
        )
        return Response(RoleDetailSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Roles'], summary='Get role details',
                      responses={200: RoleDetailSerializer, 404: OpenApiTypes.OBJECT}),
    patch=extend_schema(
        tags=['RBAC - Roles'],
        summary='Update role',
        description='''
Rename or describe a role. When `permission_ids` is present the role's
permissions are synced to exactly that set.

**Required permission:** `roles.update`
        ''',
        request=RoleUpdateSerializer,
        responses={200: RoleDetailSerializer},
    ),
    delete=extend_schema(
        tags=['RBAC - Roles'],
        summary='Delete role',
        description='System roles and roles assigned to users cannot be deleted.',
        responses={204: None, 400: OpenApiTypes.OBJECT},
    ),
)
class RoleDetailView(APIView):
    """
    GET/PATCH/DELETE /v1/rbac/roles/{id}
    """

    permission_classes = [HasAbility]

    @requires_ability(abilities.ROLES_VIEW)
    def get(self, request, role_id):
        role = _get_or_404(Role.objects.prefetch_related('permissions'), role_id, 'Role')
        return Response(RoleDetailSerializer(role).data)

    @requires_ability(abilities.ROLES_UPDATE)
    def patch(self, request, role_id):
        role = _get_or_404(Role.objects, role_id, 'Role')
        serializer = RoleUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        role = RegistryService.update_role(
            role,
            name=serializer.validated_data.get('name'),
            description=serializer.validated_data.get('description'),
            permission_ids=serializer.validated_data.get('permission_ids'),
            actor=request.user,
            request=request,
        )
        return Response(RoleDetailSerializer(role).data)

    @requires_ability(abilities.ROLES_DELETE)
    def delete(self, request, role_id):
        role = _get_or_404(Role.objects, role_id, 'Role')
        RegistryService.delete_role(role, actor=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Duplicate role',
        description='Copy a role and its permissions. Defaults the name to "<name> (Copy)".',
        request=RoleDuplicateSerializer,
        responses={201: RoleDetailSerializer},
    )
)
class RoleDuplicateView(APIView):
    """
    POST /v1/rbac/roles/{id}/duplicate
    """

    permission_classes = [HasAbility]
    required_abilities = [abilities.ROLES_CREATE]

    def post(self, request, role_id):
        role = _get_or_404(Role.objects, role_id, 'Role')
        serializer = RoleDuplicateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        copy = RegistryService.duplicate_role(
            role, name=serializer.validated_data.get('name'), actor=request.user, request=request
        )
        return Response(RoleDetailSerializer(copy).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    put=extend_schema(
        tags=['RBAC - Roles'],
        summary='Sync role permissions',
        description='''
Replace the role's permissions with `permission_ids`. Only the difference
is written; the response carries the attached and detached ids.

**Required permission:** `roles.update`
        ''',
        request=RoleUpdateSerializer,
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class RolePermissionsSyncView(APIView):
    """
    PUT /v1/rbac/roles/{id}/permissions
    """

    permission_classes = [HasAbility]
    required_abilities = [abilities.ROLES_UPDATE]

    def put(self, request, role_id):
        role = _get_or_404(Role.objects, role_id, 'Role')
        serializer = RoleUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        delta = RegistryService.sync_permissions(
            role,
            serializer.validated_data.get('permission_ids', []),
            actor=request.user,
            request=request,
        )
        return Response(delta.as_dict())


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='Get permission matrix',
        description='Every role with the ids of its permissions.',
        responses={200: OpenApiTypes.OBJECT},
    ),
    put=extend_schema(
        tags=['RBAC - Roles'],
        summary='Sync permission matrix',
        description='''
Sync several roles in one transaction. Every role and permission id is
validated before anything is written.

**Required permission:** `roles.update`
        ''',
        request=PermissionMatrixSerializer,
        responses={200: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
class PermissionMatrixView(APIView):
    """
    GET/PUT /v1/rbac/roles/matrix
    """

    permission_classes = [HasAbility]

    @requires_ability(abilities.ROLES_VIEW)
    def get(self, request):
        return Response({
            'roles': RegistryService.matrix(),
            'permissions': PermissionSerializer(Permission.objects.all(), many=True).data,
        })

    @requires_ability(abilities.ROLES_UPDATE)
    def put(self, request):
        serializer = PermissionMatrixSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        deltas = RegistryService.sync_matrix(
            serializer.validated_data['roles'], actor=request.user, request=request
        )
        return Response({'changes': [delta.as_dict() for delta in deltas]})


# ===== USERS =====

class UserAccessView(APIView):
    """Base for endpoints acting on one user; the service decides who may manage whom."""

    permission_classes = [IsAuthenticated]
    include_deleted = False

    def get_target(self, user_id):
        return UserAccessService.get_user(user_id, include_deleted=self.include_deleted)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary="Get a user's permissions",
        description='''
Direct permissions, role-derived permissions and bound scopes of a user.
Super admins are reported with `is_super_admin` and no enumerated list.

Callers may always view themselves; otherwise they need `users.view` or
must be able to manage the user.
        ''',
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class UserPermissionsView(UserAccessView):
    """
    GET /v1/rbac/users/{id}/permissions
    """

    def get(self, request, user_id):
        target = self.get_target(user_id)
        if (
            target.pk != request.user.pk
            and not AccessControlGuard.allows(request.user, abilities.USERS_VIEW)
            and not AccessControlGuard.can_manage_user(request.user, target)
        ):
            raise AuthorizationError("You are not allowed to view this user's permissions.")

        effective = HierarchyResolver.resolve_effective(target)
        data = {
            'user': UserSerializer(target).data,
            'is_super_admin': effective.is_universal,
            'direct': PermissionSerializer(HierarchyResolver.direct_permissions(target), many=True).data,
            'via_roles': PermissionSerializer(HierarchyResolver.role_permissions(target).distinct(), many=True).data,
        }
        if not effective.is_universal:
            data['effective'] = sorted(effective.names)
            data['scopes'] = [
                {'scope': scope, 'scope_id': scope_id}
                for scope, scope_id in sorted(HierarchyResolver.scopes_of(target, effective))
            ]
        return Response(data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='Permissions the caller could grant to a user',
        responses={200: PermissionSerializer(many=True)},
    )
)
class UserGrantablePermissionsView(UserAccessView):
    """
    GET /v1/rbac/users/{id}/permissions/grantable
    """

    def get(self, request, user_id):
        target = self.get_target(user_id)
        AccessControlGuard.authorize_manage_user(request.user, target)
        permissions = UserAccessService.grantable_permissions(request.user, target)
        return Response(PermissionSerializer(permissions, many=True).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Grant permissions',
        description='''
Grant direct permissions. Each name is validated on its own: the caller
must be able to manage the user and must itself hold the permission.
Valid names are applied; the rest come back in `errors` with a reason.
Returns 422 when every name was rejected.
        ''',
        request=PermissionNamesSerializer,
        responses={200: GrantValidationSerializer, 422: GrantValidationSerializer, 403: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Partial success',
                value={
                    'valid': ['areas.manage.plant.10'],
                    'errors': ['users.delete'],
                    'reasons': {'users.delete': 'You cannot grant a permission you do not hold.'},
                },
                response_only=True,
            )
        ],
    )
)
class UserPermissionGrantView(UserAccessView):
    """
    POST /v1/rbac/users/{id}/permissions/grant
    """

    def post(self, request, user_id):
        target = self.get_target(user_id)
        serializer = PermissionNamesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        validation = UserAccessService.grant_permissions(
            request.user, target, serializer.validated_data['permissions'], request=request
        )
        return _validation_response(validation)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Revoke permissions',
        request=PermissionNamesSerializer,
        responses={200: GrantValidationSerializer, 422: GrantValidationSerializer},
    )
)
class UserPermissionRevokeView(UserAccessView):
    """
    POST /v1/rbac/users/{id}/permissions/revoke
    """

    def post(self, request, user_id):
        target = self.get_target(user_id)
        serializer = PermissionNamesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        validation = UserAccessService.revoke_permissions(
            request.user, target, serializer.validated_data['permissions'], request=request
        )
        return _validation_response(validation)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Grant and revoke in one request',
        request=BulkPermissionUpdateSerializer,
        responses={200: OpenApiTypes.OBJECT},
    )
)
class UserPermissionBulkView(UserAccessView):
    """
    POST /v1/rbac/users/{id}/permissions/bulk
    """

    def post(self, request, user_id):
        target = self.get_target(user_id)
        serializer = BulkPermissionUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        granted, revoked = UserAccessService.bulk_update(
            request.user,
            target,
            grant=serializer.validated_data['grant'],
            revoke=serializer.validated_data['revoke'],
            request=request,
        )
        return Response({'grant': granted.as_dict(), 'revoke': revoked.as_dict()})


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Users'],
        summary="Copy another user's permissions",
        description='''
Copy the source user's direct permissions to this user. Without `merge`,
direct permissions the source does not have are revoked.
        ''',
        request=CopyPermissionsSerializer,
        responses={200: GrantValidationSerializer},
    )
)
class UserPermissionCopyView(UserAccessView):
    """
    POST /v1/rbac/users/{id}/permissions/copy
    """

    def post(self, request, user_id):
        target = self.get_target(user_id)
        serializer = CopyPermissionsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        source = UserAccessService.get_user(serializer.validated_data['source_user_id'])
        validation = UserAccessService.copy_permissions(
            request.user, source, target, merge=serializer.validated_data['merge'], request=request
        )
        return Response(GrantValidationSerializer(validation.as_dict()).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary="A user's permission history",
        parameters=[OpenApiParameter('page', OpenApiTypes.INT)],
        responses={200: AuditLogSerializer(many=True)},
    )
)
class UserHistoryView(UserAccessView):
    """
    GET /v1/rbac/users/{id}/history
    """

    include_deleted = True

    def get(self, request, user_id):
        target = self.get_target(user_id)
        if not AccessControlGuard.allows(request.user, abilities.USERS_VIEW):
            AccessControlGuard.authorize_manage_user(request.user, target)

        page = AuditService.history_for_user(target, page=_int_param(request, 'page', 1))
        return Response({
            'count': page.paginator.count,
            'num_pages': page.paginator.num_pages,
            'page': page.number,
            'results': AuditLogSerializer(page.object_list, many=True).data,
        })


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Users'],
        summary='Assign role',
        description='Only administrators may assign the Administrator role.',
        request=RoleAssignSerializer,
        responses={201: UserSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
    )
)
class UserRoleAssignView(UserAccessView):
    """
    POST /v1/rbac/users/{id}/roles
    """

    def post(self, request, user_id):
        target = self.get_target(user_id)
        serializer = RoleAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        role = _get_or_404(Role.objects, serializer.validated_data['role_id'], 'Role')
        UserAccessService.assign_role(request.user, target, role, request=request)
        return Response(UserSerializer(target).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Users'],
        summary='Remove role',
        description='Removing the Administrator role from the last administrator is refused with 409.',
        responses={204: None, 404: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    )
)
class UserRoleRemoveView(UserAccessView):
    """
    DELETE /v1/rbac/users/{id}/roles/{role_id}
    """

    def delete(self, request, user_id, role_id):
        target = self.get_target(user_id)
        role = _get_or_404(Role.objects, role_id, 'Role')
        UserAccessService.remove_role(request.user, target, role, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Users'],
        summary='Delete user',
        description='Soft delete. Refused with 409 for the last administrator.',
        responses={204: None, 403: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    )
)
class UserDeleteView(UserAccessView):
    """
    DELETE /v1/rbac/users/{id}
    """

    def delete(self, request, user_id):
        target = self.get_target(user_id)
        UserAccessService.delete_user(request.user, target, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(tags=['RBAC - Users'], summary='Restore user', responses={200: UserSerializer})
)
class UserRestoreView(UserAccessView):
    """
    POST /v1/rbac/users/{id}/restore
    """

    include_deleted = True

    def post(self, request, user_id):
        target = self.get_target(user_id)
        user = UserAccessService.restore_user(request.user, target, request=request)
        return Response(UserSerializer(user).data)


@extend_schema_view(
    delete=extend_schema(
        tags=['RBAC - Users'],
        summary='Permanently delete user',
        description='Administrators only. Audit entries about the user are kept.',
        responses={204: None, 403: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    )
)
class UserForceDeleteView(UserAccessView):
    """
    DELETE /v1/rbac/users/{id}/force
    """

    include_deleted = True

    def delete(self, request, user_id):
        target = self.get_target(user_id)
        UserAccessService.force_delete_user(request.user, target, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Super Admin'], summary='Super-admin ledger of a user',
                      responses={200: SuperAdminGrantSerializer(many=True)}),
    post=extend_schema(tags=['RBAC - Super Admin'], summary='Grant super admin',
                       request=SuperAdminChangeSerializer, responses={201: SuperAdminGrantSerializer}),
    delete=extend_schema(tags=['RBAC - Super Admin'], summary='Revoke super admin',
                         description='Refused with 409 when no administrator would remain.',
                         request=SuperAdminChangeSerializer,
                         responses={200: SuperAdminGrantSerializer, 409: OpenApiTypes.OBJECT}),
)
class UserSuperAdminView(UserAccessView):
    """
    GET/POST/DELETE /v1/rbac/users/{id}/super-admin
    """

    include_deleted = True

    def get(self, request, user_id):
        target = self.get_target(user_id)
        if not request.user.is_super_admin:
            raise AuthorizationError('Only super admins can view the super admin ledger.')
        return Response(SuperAdminGrantSerializer(SuperAdminService.history(target), many=True).data)

    def post(self, request, user_id):
        target = self.get_target(user_id)
        serializer = SuperAdminChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        entry = SuperAdminService.grant(
            target, request.user, reason=serializer.validated_data.get('reason'), request=request
        )
        return Response(SuperAdminGrantSerializer(entry).data, status=status.HTTP_201_CREATED)

    def delete(self, request, user_id):
        target = self.get_target(user_id)
        serializer = SuperAdminChangeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        entry = SuperAdminService.revoke(
            target, request.user, reason=serializer.validated_data.get('reason'), request=request
        )
        return Response(SuperAdminGrantSerializer(entry).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Users'],
        summary='Hierarchy nodes the caller can act on',
        description='''
For `resource.action`, the ids per scope on which the caller holds it, or
`{"all": true}` when held globally.
        ''',
        parameters=[
            OpenApiParameter('resource', OpenApiTypes.STR, required=True),
            OpenApiParameter('action', OpenApiTypes.STR, required=True),
        ],
        responses={200: OpenApiTypes.OBJECT},
    )
)
class AccessibleEntitiesView(APIView):
    """
    GET /v1/rbac/me/accessible
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        resource = request.query_params.get('resource', '')
        action = request.query_params.get('action', '')
        if not resource or not action:
            raise ValidationError(
                'resource and action are required.',
                {'resource': ['Required'] if not resource else [], 'action': ['Required'] if not action else []}
            )
        return Response(HierarchyResolver.accessible_entities(request.user, resource, action))


# ===== INVITATIONS =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Invitations'],
        summary='List invitations',
        parameters=[
            OpenApiParameter('status', OpenApiTypes.STR, enum=UserInvitation.STATUSES),
            OpenApiParameter('search', OpenApiTypes.STR, description='Email contains'),
        ],
        responses={200: UserInvitationSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Invitations'],
        summary='Invite a user',
        description='''
Invite an email address with an optional initial role and permissions.
The caller must hold every initial permission, and only administrators
may invite into the Administrator role. The email is sent after commit.

**Required permission:** `invitations.create`
        ''',
        request=InvitationCreateSerializer,
        responses={201: UserInvitationSerializer, 400: OpenApiTypes.OBJECT},
    ),
)
class InvitationListView(APIView):
    """
    GET /v1/rbac/invitations
    POST /v1/rbac/invitations
    """

    permission_classes = [HasAbility]
    pagination_class = StandardResultsSetPagination

    @requires_ability(abilities.INVITATIONS_VIEW)
    def get(self, request):
        invitations = InvitationService.listing(
            status=request.query_params.get('status'),
            search=request.query_params.get('search'),
        )
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(invitations, request)
        serializer = UserInvitationSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    @requires_ability(abilities.INVITATIONS_CREATE)
    def post(self, request):
        serializer = InvitationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        invitation = InvitationService.create(
            email=serializer.validated_data['email'],
            invited_by=request.user,
            initial_role=serializer.validated_data.get('initial_role'),
            initial_permissions=serializer.validated_data.get('initial_permissions'),
            message=serializer.validated_data.get('message'),
            request=request,
        )
        return Response(UserInvitationSerializer(invitation).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    post=extend_schema(tags=['RBAC - Invitations'], summary='Revoke invitation',
                       request=InvitationRevokeSerializer, responses={200: UserInvitationSerializer, 410: OpenApiTypes.OBJECT})
)
class InvitationRevokeView(APIView):
    """
    POST /v1/rbac/invitations/{id}/revoke
    """

    permission_classes = [HasAbility]
    required_abilities = [abilities.INVITATIONS_REVOKE]

    def post(self, request, invitation_id):
        invitation = _get_or_404(UserInvitation.objects, invitation_id, 'Invitation')
        serializer = InvitationRevokeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        invitation = InvitationService.revoke(
            invitation, request.user, reason=serializer.validated_data.get('reason'), request=request
        )
        return Response(UserInvitationSerializer(invitation).data)


@extend_schema_view(
    post=extend_schema(tags=['RBAC - Invitations'], summary='Resend invitation',
                       description='Extends the expiry and sends the email again.',
                       request=None, responses={200: UserInvitationSerializer, 410: OpenApiTypes.OBJECT})
)
class InvitationResendView(APIView):
    """
    POST /v1/rbac/invitations/{id}/resend
    """

    permission_classes = [HasAbility]
    required_abilities = [abilities.INVITATIONS_RESEND]

    def post(self, request, invitation_id):
        invitation = _get_or_404(UserInvitation.objects, invitation_id, 'Invitation')
        invitation = InvitationService.resend(invitation, by=request.user, request=request)
        return Response(UserInvitationSerializer(invitation).data)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Invitations'],
        summary='Show invitation',
        description='Public. Details shown to the invitee before accepting.',
        auth=[],
        responses={200: InvitationPublicSerializer, 404: OpenApiTypes.OBJECT, 410: OpenApiTypes.OBJECT},
    )
)
class InvitationShowView(APIView):
    """
    GET /v1/rbac/invitations/accept/{token}
    """

    authentication_classes = []
    permission_classes = []

    def get(self, request, token):
        invitation = InvitationService.get_by_token(token)
        if not invitation.is_valid():
            raise InvitationStateError('This invitation is no longer valid.', {'status': invitation.status})
        return Response(InvitationPublicSerializer(invitation).data)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Invitations'],
        summary='Accept invitation',
        description='''
Public. Creates the account, applies the invitation's role and
permissions, and logs the new user in.

Rate limited to 10 requests per minute per IP.
        ''',
        auth=[],
        request=InvitationAcceptSerializer,
        responses={
            201: UserSerializer,
            400: OpenApiTypes.OBJECT,
            404: OpenApiTypes.OBJECT,
            410: OpenApiTypes.OBJECT,
            429: OpenApiTypes.OBJECT,
        },
        examples=[
            OpenApiExample(
                'Rate Limit Exceeded',
                value={'error': 'Rate limit exceeded. Please try again later.'},
                response_only=True,
                status_codes=['429'],
            )
        ],
    )
)
@method_decorator(ratelimit(key='ip', rate='10/m', method='POST', block=False), name='dispatch')
class InvitationAcceptView(APIView):
    """
    POST /v1/rbac/invitations/accept

    No authentication required.
    Rate limited to 10 requests per minute per IP.
    """

    authentication_classes = []
    permission_classes = []

    def post(self, request):
        if getattr(request, 'limited', False):
            SecurityLogger.log_rate_limit_exceeded(
                endpoint=request.path,
                ip_address=get_client_ip(request) or 'unknown',
                limit='10/min per IP',
            )
            retry_after = 60
            response = Response(
                {
                    'error': 'Rate limit exceeded. Please try again later.',
                    'code': 'RATE_LIMIT_EXCEEDED',
                    'retry_after': retry_after,
                },
                status=status.HTTP_429_TOO_MANY_REQUESTS
            )
            response['Retry-After'] = str(retry_after)
            return response

        serializer = InvitationAcceptSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = InvitationService.accept(
            token=serializer.validated_data['token'],
            name=serializer.validated_data['name'],
            password=serializer.validated_data['password'],
            request=request,
        )
        login(request._request, user, backend='django.contrib.auth.backends.ModelBackend')

        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)


# ===== AUDIT =====

AUDIT_FILTER_PARAMETERS = [
    OpenApiParameter('search', OpenApiTypes.STR),
    OpenApiParameter('event_type', OpenApiTypes.STR),
    OpenApiParameter('user_id', OpenApiTypes.UUID, description='Actor'),
    OpenApiParameter('affected_user_id', OpenApiTypes.UUID),
    OpenApiParameter('date_from', OpenApiTypes.DATE),
    OpenApiParameter('date_to', OpenApiTypes.DATE),
]


def _audit_filters(request):
    keys = ('search', 'event_type', 'user_id', 'affected_user_id', 'date_from', 'date_to')
    return {key: request.query_params.get(key) for key in keys if request.query_params.get(key)}


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='List audit log',
        description='Newest first. **Required permission:** `audit.view`',
        parameters=AUDIT_FILTER_PARAMETERS + [
            OpenApiParameter('page', OpenApiTypes.INT),
            OpenApiParameter('page_size', OpenApiTypes.INT),
        ],
        responses={200: AuditLogSerializer(many=True)},
    )
)
class AuditLogListView(APIView):
    """
    GET /v1/rbac/audit-logs
    """

    permission_classes = [HasAbility]
    required_abilities = [abilities.AUDIT_VIEW]

    def get(self, request):
        page = AuditService.query(
            _audit_filters(request),
            page=_int_param(request, 'page', 1),
            page_size=_int_param(request, 'page_size', settings.AUDIT_LOG_PAGE_SIZE, maximum=100),
        )
        return Response({
            'count': page.paginator.count,
            'num_pages': page.paginator.num_pages,
            'page': page.number,
            'results': AuditLogSerializer(page.object_list, many=True).data,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='Export audit log as CSV',
        description='Full, unpaginated export honouring the list filters. **Required permission:** `audit.export`',
        parameters=AUDIT_FILTER_PARAMETERS,
        responses={(200, 'text/csv'): OpenApiTypes.STR},
    )
)
class AuditLogExportView(APIView):
    """
    GET /v1/rbac/audit-logs/export
    """

    permission_classes = [HasAbility]
    required_abilities = [abilities.AUDIT_EXPORT]

    def get(self, request):
        filters = _audit_filters(request)
        # Bad filters must fail before streaming starts
        AuditService.filtered(filters)

        response = StreamingHttpResponse(AuditService.export_csv(filters), content_type='text/csv')
        response['Content-Disposition'] = f'attachment; filename="{AuditService.export_filename()}"'
        return response


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Audit'],
        summary='Delete old audit entries',
        description=f'''
Delete entries older than `keep_days` days
({settings.AUDIT_LOG_KEEP_DAYS_MIN}-{settings.AUDIT_LOG_KEEP_DAYS_MAX}).
The cleanup itself is recorded.

**Required permission:** `audit.cleanup`
        ''',
        request=AuditCleanupSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT},
    )
)
class AuditLogCleanupView(APIView):
    """
    POST /v1/rbac/audit-logs/cleanup
    """

    permission_classes = [HasAbility]
    required_abilities = [abilities.AUDIT_CLEANUP]

    def post(self, request):
        serializer = AuditCleanupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        keep_days = serializer.validated_data['keep_days']
        deleted = AuditService.cleanup(keep_days, actor=request.user, request=request)
        return Response({'deleted': deleted, 'keep_days': keep_days})


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='Audit statistics',
        parameters=[OpenApiParameter('days', OpenApiTypes.INT)],
        responses={200: OpenApiTypes.OBJECT},
    )
)
class AuditLogStatsView(APIView):
    """
    GET /v1/rbac/audit-logs/stats
    """

    permission_classes = [HasAbility]
    required_abilities = [abilities.AUDIT_VIEW]

    def get(self, request):
        days = _int_param(request, 'days', 30, maximum=3650)
        return Response(AuditService.statistics(days=days))
