"""
Tournado - Tournament Management Service

Responsibilities:
- Tournament registry (CRUD, divisions and categories)
- Team registration with confirmation emails
- Group stage creation and team-to-slot assignment
- User roles, permissions and audit trail
- Real-time change events for group stage editors
"""
