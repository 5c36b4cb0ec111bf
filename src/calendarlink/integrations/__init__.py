# Provider-side integrations: PKCE, authorization state, tokens, calendar API.
