"""GitHub GraphQL documents used by the repository sync and enrichment."""

# Top repositories by stars, cursor paginated.
SEARCH_TOP_REPOSITORIES_QUERY = """
query GetTopRepos($query: String!, $limit: Int!, $cursor: String) {
  search(query: $query, type: REPOSITORY, first: $limit, after: $cursor) {
    pageInfo {
      endCursor
      hasNextPage
    }
    nodes {
      ... on Repository {
        databaseId
        name
        nameWithOwner
        owner {
          login
          avatarUrl
          __typename
        }
        description
        url
        homepageUrl
        stargazerCount
        forkCount
        watchers { totalCount }
        issues(states: OPEN) { totalCount }
        diskUsage
        primaryLanguage { name }
        repositoryTopics(first: 10) {
          nodes {
            topic { name }
          }
        }
        languages(first: 10, orderBy: {field: SIZE, direction: DESC}) {
          edges {
            size
            node { name }
          }
          totalSize
        }
        licenseInfo {
          name
          key
        }
        createdAt
        updatedAt
        pushedAt
        isFork
        isArchived
        isDisabled
        forkingAllowed
        isTemplate
        visibility
        hasIssuesEnabled
        hasProjectsEnabled
        hasWikiEnabled
        hasDiscussionsEnabled
        defaultBranchRef {
          name
          target {
            ... on Commit {
              history(first: 1) {
                totalCount
              }
            }
          }
        }
        releases(first: 1, orderBy: {field: CREATED_AT, direction: DESC}) {
          totalCount
          nodes {
            tagName
            publishedAt
          }
        }
      }
    }
  }
}
"""

# Default-branch commit authors, used when the contributors endpoint refuses large repos.
RECENT_COMMIT_AUTHORS_QUERY = """
query GetRecentContributors($owner: String!, $name: String!, $first: Int!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    defaultBranchRef {
      target {
        ... on Commit {
          history(first: $first, after: $cursor) {
            pageInfo {
              endCursor
              hasNextPage
            }
            nodes {
              author {
                user {
                  databaseId
                  login
                  avatarUrl
                  url
                }
              }
            }
          }
        }
      }
    }
  }
}
"""
