ROLE_CHOICES = [
    ('farmer', 'Farmer'),
    ('expert', 'Expert'),
    ('admin', 'Administrator'),
    ('super_admin', 'Super Administrator'),
]

ADMIN_ROLES = ['admin', 'super_admin']

LOGIN_ROUTE = '/login'
PUBLIC_ROUTES = ['/login', '/register']


class IsAuthenticated:
    """Any logged-in user"""
    def has_permission(self, user):
        return bool(user)


class IsAdmin:
    """Only admins can access"""
    def has_permission(self, user):
        return bool(user) and user.get('role') in ADMIN_ROLES


class IsSuperAdmin:
    """Only super admins can access - for database management"""
    def has_permission(self, user):
        return bool(user) and user.get('role') == 'super_admin'


FARMER_NAVIGATION = [
    {'path': '/dashboard', 'label': 'Dashboard'},
    {'path': '/detect', 'label': 'Detect Pest'},
    {'path': '/heatmap', 'label': 'Heat Map'},
    {'path': '/pests', 'label': 'Pest Library'},
    {'path': '/profile', 'label': 'Profile'},
]

ADMIN_NAVIGATION = [
    {'path': '/admin/dashboard', 'label': 'Dashboard'},
    {'path': '/admin/users', 'label': 'Users'},
    {'path': '/admin/farms', 'label': 'Farms'},
    {'path': '/admin/farm-requests', 'label': 'Farm Requests'},
    {'path': '/admin/detections', 'label': 'Detections'},
    {'path': '/admin/pests', 'label': 'Pest Info'},
    {'path': '/admin/alerts', 'label': 'Alerts'},
    {'path': '/admin/activities', 'label': 'Activity Logs'},
]

DATABASE_NAVIGATION = {'path': '/admin/database', 'label': 'Database'}

# Most specific prefix first
ROUTE_PERMISSIONS = [
    ('/admin/database', IsSuperAdmin),
    ('/admin/', IsAdmin),
    ('/', IsAuthenticated),
]


def home_route(user):
    if user and user.get('role') in ADMIN_ROLES:
        return '/admin/dashboard'
    return '/dashboard'


def resolve_route(session, path):
    """
    Return where a navigation to ``path`` should land.

    Unauthenticated users always end up on the login page; logged-in users
    are bounced off public pages to their role's home and off pages their
    role may not open.
    """
    user = session.user if session.is_authenticated else None

    if path in PUBLIC_ROUTES:
        return home_route(user) if user else path
    if user is None:
        return LOGIN_ROUTE
    if path == '/':
        return home_route(user)

    for prefix, permission_class in ROUTE_PERMISSIONS:
        if path.startswith(prefix):
            if permission_class().has_permission(user):
                return path
            return home_route(user)
    return path


def navigation_items(user):
    if not user:
        return []
    if user.get('role') not in ADMIN_ROLES:
        return list(FARMER_NAVIGATION)
    items = list(ADMIN_NAVIGATION)
    if IsSuperAdmin().has_permission(user):
        items.append(DATABASE_NAVIGATION)
    return items
